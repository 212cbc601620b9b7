"""
Registry resolvers - turn a model identifier into a file manifest (preflight)
One implementation per registry kind: Hugging Face Hub (direct file listing and
byte streams) and the Ollama registry (content-addressed manifest).
"""

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Optional, Tuple
from urllib.parse import urlparse

import aiohttp
import structlog
from huggingface_hub import HfApi, get_hf_file_metadata, hf_hub_url
from huggingface_hub.errors import (
    GatedRepoError,
    HfHubHTTPError,
    RepositoryNotFoundError,
    RevisionNotFoundError,
)
from pydantic import ValidationError

from ..core.errors import (
    AuthRequiredError,
    ImporterError,
    InvalidManifestError,
    ModelNotFoundError,
    TransferError,
    UpstreamError,
)
from ..schemas.models import ManifestFile, ModelSource, PreflightManifest

logger = structlog.get_logger(__name__)

# Weight files this small are LFS pointers served in place of gated content
MODEL_WEIGHT_SUFFIXES = (".safetensors", ".bin", ".gguf")
GATED_POINTER_MAX_SIZE = 1024

OLLAMA_MANIFEST_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.v2+json"
OLLAMA_MANIFEST_PREFIX = "ollama/manifests/"
OLLAMA_BLOB_PREFIX = "ollama/blobs/"


class RegistryResolver(ABC):
    """Preflight contract shared by all registry kinds"""

    source: ModelSource

    def __init__(self, timeout: float = 60.0, session: Optional[aiohttp.ClientSession] = None):
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.timeout, sock_read=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    @abstractmethod
    async def preflight(self, model_id: str, credentials: Optional[str] = None) -> PreflightManifest:
        """Resolve ``model_id`` into its file list and total size"""


class HuggingFaceResolver(RegistryResolver):
    """Direct registry backed by the Hugging Face Hub"""

    source = ModelSource.HUGGINGFACE

    def __init__(self,
                 endpoint: str = "https://huggingface.co",
                 default_token: Optional[str] = None,
                 chunk_size: int = 8 * 1024 * 1024,
                 timeout: float = 60.0,
                 session: Optional[aiohttp.ClientSession] = None):
        super().__init__(timeout=timeout, session=session)
        self.endpoint = endpoint.rstrip("/")
        self.default_token = default_token or None
        self.chunk_size = chunk_size
        self.hf_api = HfApi(endpoint=self.endpoint)

    def _token(self, credentials: Optional[str]) -> Optional[str]:
        return credentials or self.default_token

    def _translate(self, model_id: str, error: Exception) -> ImporterError:
        """Map huggingface_hub failures to import errors"""
        if isinstance(error, ImporterError):
            return error
        if isinstance(error, GatedRepoError):
            return AuthRequiredError(
                f"Model '{model_id}' is gated. A Hugging Face token is required for access."
            )
        if isinstance(error, (RepositoryNotFoundError, RevisionNotFoundError)):
            return ModelNotFoundError(f"Model '{model_id}' was not found on the Hugging Face Hub.")
        if isinstance(error, HfHubHTTPError):
            status = getattr(error.response, "status_code", None)
            if status == 401:
                return AuthRequiredError(
                    "Unauthorized. The provided Hugging Face token may be invalid "
                    "or missing for a gated model."
                )
            if status == 404:
                return ModelNotFoundError(f"Model '{model_id}' was not found on the Hugging Face Hub.")
        return UpstreamError(f"Failed to fetch model info from Hugging Face Hub: {error}")

    async def _file_size(self, model_id: str, file_name: str, token: Optional[str]) -> int:
        url = hf_hub_url(model_id, file_name, endpoint=self.endpoint)
        metadata = await asyncio.to_thread(get_hf_file_metadata, url, token=token, timeout=self.timeout)
        return metadata.size or 0

    async def preflight(self, model_id: str, credentials: Optional[str] = None) -> PreflightManifest:
        token = self._token(credentials)
        logger.info("Hugging Face preflight", model_id=model_id, authenticated=token is not None)

        try:
            info = await asyncio.to_thread(self.hf_api.model_info, model_id, token=token)
        except Exception as e:
            logger.error("Model listing failed", model_id=model_id, error=str(e))
            raise self._translate(model_id, e) from e

        if getattr(info, "gated", False) and not token:
            raise AuthRequiredError(
                f"Model '{model_id}' is gated. A Hugging Face token is required for access."
            )

        names = [sibling.rfilename for sibling in (info.siblings or [])]
        if not names:
            raise ModelNotFoundError(f"No files found for model {model_id}.")

        try:
            sizes = await asyncio.gather(*(self._file_size(model_id, name, token) for name in names))
        except Exception as e:
            logger.error("File metadata lookup failed", model_id=model_id, error=str(e))
            raise self._translate(model_id, e) from e

        files = [ManifestFile(name=name, size=size) for name, size in zip(names, sizes)]

        gated_suspected = any(
            f.name.endswith(MODEL_WEIGHT_SUFFIXES) and f.size < GATED_POINTER_MAX_SIZE
            for f in files
        )
        if gated_suspected and not token:
            raise AuthRequiredError(
                f"Model '{model_id}' appears to contain gated files. "
                "A Hugging Face token is required for access."
            )

        manifest = PreflightManifest.from_files(files)
        logger.info("Hugging Face preflight complete", model_id=model_id,
                    files=len(files), total_size=manifest.total_size)
        return manifest

    async def iter_file(self, model_id: str, file_name: str,
                        credentials: Optional[str] = None) -> AsyncIterator[bytes]:
        """Stream a file's bytes in chunks"""
        token = self._token(credentials)
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        url = hf_hub_url(model_id, file_name, endpoint=self.endpoint)

        session = await self._get_session()
        async with session.get(url, headers=headers) as response:
            if response.status >= 400:
                raise TransferError(f"Failed to download {file_name}: {response.status} {response.reason}")
            async for chunk in response.content.iter_chunked(self.chunk_size):
                yield chunk


def parse_ollama_ref(ref: str) -> Tuple[str, str, str]:
    """Split ``[namespace/]model[:tag]`` into (namespace, model, tag)"""
    if ":" in ref:
        name, tag = ref.rsplit(":", 1)
    else:
        name, tag = ref, "latest"
    if "/" in name:
        namespace, model = name.split("/", 1)
    else:
        namespace, model = "library", name
    return namespace, model, tag or "latest"


class OllamaResolver(RegistryResolver):
    """Delegated registry backed by an OCI-style Ollama registry"""

    source = ModelSource.OLLAMA

    def __init__(self,
                 registry_url: str = "https://registry.ollama.ai",
                 timeout: float = 60.0,
                 session: Optional[aiohttp.ClientSession] = None):
        super().__init__(timeout=timeout, session=session)
        self.registry_url = registry_url.rstrip("/")

    def manifest_url(self, model_id: str) -> str:
        namespace, model, tag = parse_ollama_ref(model_id)
        return f"{self.registry_url}/v2/{namespace}/{model}/manifests/{tag}"

    def blob_url(self, model_id: str, digest: str) -> str:
        namespace, model, _ = parse_ollama_ref(model_id)
        return f"{self.registry_url}/v2/{namespace}/{model}/blobs/{digest}"

    def manifest_key(self, model_id: str) -> str:
        """Object key of the manifest in the layout an Ollama server mounts"""
        namespace, model, tag = parse_ollama_ref(model_id)
        host = urlparse(self.registry_url).netloc
        return f"{OLLAMA_MANIFEST_PREFIX}{host}/{namespace}/{model}/{tag}"

    @staticmethod
    def blob_key(digest: str) -> str:
        # Blobs are stored as sha256-<hex>, not sha256:<hex>
        return f"{OLLAMA_BLOB_PREFIX}{digest.replace(':', '-')}"

    @staticmethod
    def _blob_entry(descriptor: dict) -> ManifestFile:
        try:
            return ManifestFile(name=descriptor["digest"], size=descriptor.get("size") or 0)
        except ValidationError as e:
            raise InvalidManifestError(f"Invalid blob descriptor in manifest: {descriptor!r}") from e

    async def preflight(self, model_id: str, credentials: Optional[str] = None) -> PreflightManifest:
        url = self.manifest_url(model_id)
        logger.info("Ollama preflight", model_id=model_id, url=url)

        session = await self._get_session()
        try:
            async with session.get(url, headers={"Accept": OLLAMA_MANIFEST_MEDIA_TYPE}) as response:
                if response.status == 404:
                    raise ModelNotFoundError(f"Model not found in registry: {model_id}")
                if response.status >= 400:
                    text = await response.text()
                    raise UpstreamError(f"Model not found or registry error: {text}")
                # The registry may answer with text/plain
                manifest = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Manifest fetch failed", model_id=model_id, error=str(e))
            raise UpstreamError(f"Failed to fetch manifest for {model_id}: {e}") from e
        except ValueError as e:
            raise UpstreamError(f"Registry returned an unreadable manifest for {model_id}") from e

        if not isinstance(manifest, dict):
            raise InvalidManifestError("Registry returned a manifest that is not a JSON object.")
        layers = manifest.get("layers") or []
        if not isinstance(layers, list) or not layers:
            raise InvalidManifestError("Manifest does not contain any layers.")

        files: List[ManifestFile] = []
        config = manifest.get("config") or {}
        if not isinstance(config, dict):
            raise InvalidManifestError("Manifest config is not a JSON object.")
        if config.get("digest"):
            files.append(self._blob_entry(config))
        for layer in layers:
            if not isinstance(layer, dict) or not layer.get("digest"):
                raise InvalidManifestError(f"Manifest layer without a digest: {layer!r}")
            files.append(self._blob_entry(layer))

        result = PreflightManifest.from_files(files, manifest=manifest)
        logger.info("Ollama preflight complete", model_id=model_id,
                    files=len(files), total_size=result.total_size)
        return result
