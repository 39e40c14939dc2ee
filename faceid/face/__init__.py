"""Face identification building blocks (preprocess/engine/extractor/gallery/matcher/locator).

`FaceRecognizer` in `faceid.face.recognizer` wires them together.
"""
