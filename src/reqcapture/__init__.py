from .api import capture_requests as capture_requests
from .context import CaptureContext as CaptureContext
from .core import RequestCapturer as RequestCapturer
from .hooks import create_requests_capture_handler as create_requests_capture_handler
from .hooks import install_hooks as install_hooks
from .models import CapturedRequest as CapturedRequest
from .models import CaptureOptions as CaptureOptions

__all__ = [
    "capture_requests",
    "CaptureContext",
    "RequestCapturer",
    "create_requests_capture_handler",
    "install_hooks",
    "CapturedRequest",
    "CaptureOptions",
]
