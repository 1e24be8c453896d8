import os

os.environ.setdefault("OTEL_NO_AUTO_INIT", "1")
