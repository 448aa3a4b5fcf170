"""
Face Embedding Service using DeepFace

This module turns an image into a raw ArcFace embedding:
- Base64 and image decoding
- Preprocessing into the fixed 112x112 tensor ArcFace expects
- Inference with one shared ArcFace model

Input faces are assumed to be already cropped and aligned; no detection
is performed. The returned embedding is the raw model output and is
normalized by the embedding store.
"""
import base64
import binascii
import threading
from io import BytesIO
import logging

import cv2
import numpy as np
from PIL import Image

from app.config import FACE_RECOGNITION_MODEL, MODEL_INPUT_SIZE
from app.exceptions import DecodeError, InferenceError

logger = logging.getLogger(__name__)


def decode_base64_image(image_base64: str) -> bytes:
    """Decode a base64 payload into raw image bytes."""
    try:
        image_bytes = base64.b64decode(image_base64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64 image: {e}")
    if not image_bytes:
        raise DecodeError("Empty image payload")
    return image_bytes


def decode_image(image_bytes: bytes) -> np.ndarray:
    """
    Decode image bytes into an RGB uint8 array.

    Handles PNG with alpha, grayscale, palette images etc. by converting
    to RGB.

    Raises:
        DecodeError: If the bytes are not an image or the image is empty
    """
    if not image_bytes:
        raise DecodeError("Empty image payload")
    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except Exception as e:
        raise DecodeError(f"Failed to decode image: {e}")

    if image.size[0] == 0 or image.size[1] == 0:
        raise DecodeError("Image has zero area")

    if image.mode != "RGB":
        image = image.convert("RGB")

    return np.array(image)


def preprocess_image(img_array: np.ndarray, size: int = MODEL_INPUT_SIZE) -> np.ndarray:
    """
    Build the model input tensor from an RGB image.

    Steps:
    1. Resize exactly to size x size (bilinear)
    2. Convert RGB -> BGR, the channel order ArcFace was trained on
    3. Map [0, 255] to about [-1, 1] with (p - 127.5) / 128

    Returns:
        float32 tensor of shape (1, size, size, 3)
    """
    if img_array.ndim != 3 or img_array.shape[0] == 0 or img_array.shape[1] == 0:
        raise DecodeError(f"Unsupported image shape {img_array.shape}")

    resized = cv2.resize(img_array, (size, size), interpolation=cv2.INTER_LINEAR)
    bgr = cv2.cvtColor(resized, cv2.COLOR_RGB2BGR)

    tensor = (bgr.astype(np.float32) - 127.5) / 128.0
    return np.expand_dims(tensor, axis=0)


class FaceEmbeddingService:
    """
    Service class for embedding extraction.

    Wraps a single ArcFace model built through DeepFace. The model is
    loaded once (at startup) and only read afterwards, so `extract` can be
    called from many threads at once.
    """

    def __init__(self, model_name: str = FACE_RECOGNITION_MODEL, input_size: int = MODEL_INPUT_SIZE):
        self.model_name = model_name
        self.input_size = input_size
        self._model = None
        self._load_lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def load(self) -> None:
        """Build the recognition model. Safe to call more than once."""
        with self._load_lock:
            if self._model is not None:
                return
            from deepface import DeepFace

            logger.info(f"Loading {self.model_name} model...")
            try:
                self._model = DeepFace.build_model(model_name=self.model_name)
            except Exception as e:
                raise InferenceError(f"Failed to load {self.model_name}: {e}")
            logger.info(f"{self.model_name} model loaded successfully")

    def extract(self, tensor: np.ndarray) -> np.ndarray:
        """
        Run the model on a preprocessed tensor.

        Returns:
            Raw float32 embedding (not normalized)

        Raises:
            InferenceError: If the model fails or returns an unusable vector
        """
        if self._model is None:
            self.load()

        try:
            output = self._model.forward(tensor)
        except Exception as e:
            logger.error(f"{self.model_name} inference failed: {e}")
            raise InferenceError(f"Inference failed: {e}")

        embedding = np.asarray(output, dtype=np.float32).reshape(-1)
        if embedding.size == 0:
            raise InferenceError("Model returned an empty embedding")
        if not np.all(np.isfinite(embedding)):
            raise InferenceError("Model returned non-finite values")
        return embedding

    def generate_embedding_from_bytes(self, image_bytes: bytes) -> np.ndarray:
        """
        Complete pipeline: bytes -> raw embedding.

        Raises:
            DecodeError: Image could not be decoded
            InferenceError: Model failed
        """
        img_array = decode_image(image_bytes)
        tensor = preprocess_image(img_array, self.input_size)
        logger.debug(f"Image {img_array.shape[:2]} preprocessed to {tensor.shape}")
        return self.extract(tensor)


# Singleton instance
face_service = FaceEmbeddingService()
