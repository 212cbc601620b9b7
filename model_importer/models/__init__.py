"""
Model import engines
Registry resolvers, transfer strategies, the metadata document store and
status reconciliation for delegated jobs
"""

from .metadata_store import MetadataDocumentStore
from .object_store import ObjectStore, LocalObjectStore, S3ObjectStore, create_object_store
from .resolvers import HuggingFaceResolver, OllamaResolver
from .transfer import DirectStreamingTransfer, DelegatedBuildTransfer
from .execution_engine import ExecutionEngine, HttpExecutionEngine, create_execution_engine
from .poller import StatusPoller, ImportWatcher
from .progress import ProgressSink, QueueProgressSink
from .verification import VerificationCheck

__version__ = "1.0.0"
__all__ = [
    "MetadataDocumentStore",
    "ObjectStore",
    "LocalObjectStore",
    "S3ObjectStore",
    "create_object_store",
    "HuggingFaceResolver",
    "OllamaResolver",
    "DirectStreamingTransfer",
    "DelegatedBuildTransfer",
    "ExecutionEngine",
    "HttpExecutionEngine",
    "create_execution_engine",
    "StatusPoller",
    "ImportWatcher",
    "ProgressSink",
    "QueueProgressSink",
    "VerificationCheck",
]
