"""
Face Embedding Search Service

Registers faces and finds the closest registered faces using:
- DeepFace's ArcFace model for face embeddings
- An in-memory, parallel exact cosine-similarity scan
- PostgreSQL as the durable store
- FastAPI for the RESTful API
"""

__version__ = "1.0.0"
