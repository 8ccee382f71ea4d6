"""Request orchestration for the image transform backend."""

from .client import TransformationClient
from .controller import TransformController
from .errors import (
    BackendConnectionError,
    ProcessError,
    ProtocolError,
    RequestTimeoutError,
    ServerError,
    TransformError,
    ValidationError,
)
from .health import HealthMonitor, HealthPoller, HealthStatus
from .process_state import ProcessState
from .registry import BackendId, BackendOption, BackendRegistry, SelectionStore
from .settings import Settings, load_settings
from .specs import (
    ColorSpec,
    CropShape,
    CropSpec,
    ImageFile,
    ResizeSpec,
    TransformationResult,
    TransformationSpecs,
)
from .validation import validate_file, validate_request, validate_specs
from .version_supervisor import SetVersionResult, StartResult, VersionSupervisor, VersionsManifest

__all__ = [
    'TransformationClient',
    'TransformController',
    'TransformError',
    'ValidationError',
    'RequestTimeoutError',
    'BackendConnectionError',
    'ServerError',
    'ProtocolError',
    'ProcessError',
    'HealthMonitor',
    'HealthPoller',
    'HealthStatus',
    'ProcessState',
    'BackendId',
    'BackendOption',
    'BackendRegistry',
    'SelectionStore',
    'Settings',
    'load_settings',
    'ColorSpec',
    'CropShape',
    'CropSpec',
    'ImageFile',
    'ResizeSpec',
    'TransformationResult',
    'TransformationSpecs',
    'validate_file',
    'validate_request',
    'validate_specs',
    'SetVersionResult',
    'StartResult',
    'VersionSupervisor',
    'VersionsManifest',
]
