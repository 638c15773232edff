"""
object_matcher — Embedding-based object matching and counting.

Captures a reference object once, then repeatedly grabs camera frames,
embeds them with an image classification model and counts every frame
whose cosine similarity to the reference clears a threshold.

Modules:
    session        MatchingSession state machine and capture/compare loop
    extractor      FeatureExtractor (image -> embedding)
    backends       InferenceBackend interface + onnxruntime implementation
    preprocessing  Image normalization, resizing and tensor layout
    scoring        Cosine similarity between embeddings
    decision       Threshold policy and running match count
    events         MatchEvent, ErrorKind and notifiers
    sources        Camera, file and in-memory image sources
    config         Environment-driven configuration
    errors         Exception taxonomy
"""

__version__ = "1.0.0"
