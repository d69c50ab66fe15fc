"""HTTP client for the Orthanc REST API and its DICOMweb plugin.

Thin wrapper over a :class:`requests.Session`: each method maps onto one
endpoint and returns decoded JSON, or a streaming :class:`requests.Response`
for binary payloads (archives, DICOM files, WADO responses).  The caller owns
streaming responses and must close them (``with client.download_instance(...)
as resp:``).

Optional request fields are passed as ``None`` when unset and are dropped
from the JSON body, so "not given" is never confused with ``false``.
"""

import logging
from typing import BinaryIO, Iterator, Optional

import requests
import urllib3

from orthanc_cli.config import DEFAULT_TIMEOUT, STREAM_CHUNK_SIZE
from orthanc_cli.context_store import OrthancContext
from orthanc_cli.errors import ConfigError, OrthancRequestError
from orthanc_cli.utils import drop_none

logger = logging.getLogger(__name__)

DICOM_MEDIA_TYPE = "application/dicom"
WADO_RS_ACCEPT = f'multipart/related; type="{DICOM_MEDIA_TYPE}"; transfer-syntax=*'
OCTET_STREAM_ACCEPT = 'multipart/related; type="application/octet-stream"'


def iter_response_chunks(response: requests.Response) -> Iterator[bytes]:
    """Yield the raw body of a streaming response."""
    return response.iter_content(chunk_size=STREAM_CHUNK_SIZE)


class OrthancClient:
    """Talks to one Orthanc server."""

    def __init__(
        self,
        url: str,
        username: str = "",
        password: str = "",
        insecure: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if username and password:
            self.session.auth = (username, password)
        if insecure:
            self.session.verify = False
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.url}/{path.lstrip('/')}"
        kwargs.setdefault("timeout", self.timeout)
        logger.debug("%s %s params=%s", method, url, kwargs.get("params"))
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise OrthancRequestError(f"{method} {url} failed: {exc}") from exc

        if response.status_code >= 400:
            detail = self._error_detail(response)
            response.close()
            raise OrthancRequestError(
                f"{method} {url} returned HTTP {response.status_code}{detail}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _error_detail(response: requests.Response) -> str:
        """Orthanc reports errors as JSON with ``Message``/``Details`` keys."""
        try:
            body = response.json()
        except ValueError:
            return f": {response.reason}" if response.reason else ""
        if isinstance(body, dict):
            parts = [str(body[key]) for key in ("Message", "Details") if body.get(key)]
            if parts:
                return ": " + " - ".join(parts)
        return ""

    def _json(self, method: str, path: str, **kwargs):
        response = self._request(method, path, **kwargs)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise OrthancRequestError(f"{method} {path}: invalid JSON in response") from exc

    def get(self, path: str, params: Optional[dict] = None):
        return self._json("GET", path, params=drop_none(params or {}))

    def post(self, path: str, body=None):
        return self._json("POST", path, json=body)

    def put(self, path: str, body=None):
        return self._json("PUT", path, json=body)

    def delete(self, path: str) -> None:
        self._request("DELETE", path).close()

    def stream(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
        body=None,
    ) -> requests.Response:
        """Issue a request whose body is read lazily; caller closes the response."""
        return self._request(
            method, path, params=drop_none(params or {}), headers=headers, json=body, stream=True
        )

    # ------------------------------------------------------------------
    # Patients / studies / series / instances
    # ------------------------------------------------------------------

    def list_resources(
        self,
        level: str,
        expand: bool = False,
        limit: Optional[int] = None,
        since: Optional[int] = None,
    ) -> list:
        """``GET /{level}`` where level is patients, studies, series or instances."""
        params = {"limit": limit or None, "since": since or None}
        if expand:
            params["expand"] = ""
        return self.get(level, params) or []

    def get_resource(self, level: str, resource_id: str) -> dict:
        return self.get(f"{level}/{resource_id}")

    def delete_resource(self, level: str, resource_id: str) -> None:
        self.delete(f"{level}/{resource_id}")

    def list_children(self, level: str, resource_id: str, child: str, expand: bool = False) -> list:
        """``GET /studies/{id}/series`` and friends."""
        result = self.get(f"{level}/{resource_id}/{child}") or []
        if expand:
            return result
        # Child lists always come back as full objects; reduce to IDs.
        return [item["ID"] if isinstance(item, dict) else item for item in result]

    def anonymize(
        self,
        level: str,
        resource_id: str,
        force: Optional[bool] = None,
        keep_source: Optional[bool] = None,
        permissive: Optional[bool] = None,
    ) -> dict:
        """Anonymize a patient, study or series; returns the new resource summary."""
        body = drop_none({"Force": force, "KeepSource": keep_source, "Permissive": permissive})
        return self.post(f"{level}/{resource_id}/anonymize", body)

    def anonymize_instance(
        self,
        instance_id: str,
        force: Optional[bool] = None,
        keep_source: Optional[bool] = None,
        permissive: Optional[bool] = None,
    ) -> requests.Response:
        """Anonymize one instance; the response body is the anonymized DICOM file."""
        body = drop_none({"Force": force, "KeepSource": keep_source, "Permissive": permissive})
        return self.stream("POST", f"instances/{instance_id}/anonymize", body=body)

    def download_archive(self, level: str, resource_id: str) -> requests.Response:
        return self.stream("GET", f"{level}/{resource_id}/archive")

    def download_instance(self, instance_id: str) -> requests.Response:
        return self.stream("GET", f"instances/{instance_id}/file")

    def upload_instance(self, fh: BinaryIO) -> dict:
        return self._json(
            "POST", "instances", data=fh, headers={"Content-Type": DICOM_MEDIA_TYPE}
        )

    # ------------------------------------------------------------------
    # Modalities
    # ------------------------------------------------------------------

    def list_modalities(self, expand: bool = False):
        return self.get("modalities", {"expand": ""} if expand else None)

    def get_modality(self, name: str) -> dict:
        return self.get(f"modalities/{name}/configuration")

    def put_modality(self, name: str, config: dict) -> None:
        self.put(f"modalities/{name}", drop_none(config))

    def delete_modality(self, name: str) -> None:
        self.delete(f"modalities/{name}")

    def echo_modality(self, name: str, timeout: Optional[int] = None) -> None:
        self.post(f"modalities/{name}/echo", drop_none({"Timeout": timeout}))

    def find_in_modality(
        self,
        name: str,
        level: str,
        query: dict,
        normalize: Optional[bool] = None,
        timeout: Optional[int] = None,
    ) -> list:
        """C-FIND; Orthanc stores the answers under ``/queries/{id}``."""
        body = drop_none({
            "Level": level,
            "Query": query,
            "Normalize": normalize,
            "Timeout": timeout or None,
        })
        created = self.post(f"modalities/{name}/query", body) or {}
        query_id = created.get("ID")
        if not query_id:
            raise OrthancRequestError(f"C-FIND on {name!r} returned no query ID")
        return self.get(f"queries/{query_id}/answers", {"expand": "", "simplify": ""}) or []

    def move_from_modality(self, name: str, request: dict):
        """C-MOVE of the resources described by *request* to ``TargetAet``."""
        return self.post(f"modalities/{name}/move", drop_none(request))

    def get_from_modality(self, name: str, request: dict):
        """C-GET of the resources described by *request* into this Orthanc."""
        return self.post(f"modalities/{name}/get", drop_none(request))

    def store_to_modality(self, name: str, request: dict):
        """C-STORE of local resources to the modality."""
        return self.post(f"modalities/{name}/store", drop_none(request))

    # ------------------------------------------------------------------
    # DICOMweb servers
    # ------------------------------------------------------------------

    def list_servers(self, expand: bool = False):
        return self.get("dicom-web/servers", {"expand": ""} if expand else None)

    def get_server(self, name: str) -> dict:
        servers = self.list_servers(expand=True) or {}
        if name not in servers:
            raise OrthancRequestError(f"DICOMweb server {name!r} not found", status_code=404)
        return servers[name]

    def put_server(self, name: str, config: dict) -> None:
        self.put(f"dicom-web/servers/{name}", drop_none(config))

    def delete_server(self, name: str) -> None:
        self.delete(f"dicom-web/servers/{name}")

    # ------------------------------------------------------------------
    # Tools / system
    # ------------------------------------------------------------------

    def find(self, request: dict) -> list:
        return self.post("tools/find", drop_none(request)) or []

    def get_log_level(self) -> str:
        response = self._request("GET", "tools/log-level")
        return response.text.strip()

    def set_log_level(self, level: str) -> None:
        self._request("PUT", "tools/log-level", data=level).close()

    def reset(self) -> None:
        self.post("tools/reset")

    def shutdown(self) -> None:
        self.post("tools/shutdown")

    def system(self) -> dict:
        return self.get("system")

    # ------------------------------------------------------------------
    # DICOMweb: QIDO-RS / WADO-RS / WADO-URI
    # ------------------------------------------------------------------

    def qido(self, path: str, params: dict) -> list:
        """QIDO-RS search, e.g. ``studies`` or ``studies/{uid}/series``."""
        response = self._request(
            "GET",
            f"dicom-web/{path}",
            params=drop_none(params),
            headers={"Accept": "application/dicom+json"},
        )
        if not response.content:
            return []
        return response.json()

    @staticmethod
    def wado_rs_path(
        study_uid: str,
        series_uid: Optional[str] = None,
        instance_uid: Optional[str] = None,
        frames: Optional[str] = None,
    ) -> str:
        path = f"dicom-web/studies/{study_uid}"
        if series_uid:
            path += f"/series/{series_uid}"
            if instance_uid:
                path += f"/instances/{instance_uid}"
                if frames:
                    path += f"/frames/{frames}"
        return path

    def wado_rs_retrieve(
        self,
        study_uid: str,
        series_uid: Optional[str] = None,
        instance_uid: Optional[str] = None,
        frames: Optional[str] = None,
    ) -> requests.Response:
        path = self.wado_rs_path(study_uid, series_uid, instance_uid, frames)
        accept = OCTET_STREAM_ACCEPT if frames else WADO_RS_ACCEPT
        return self.stream("GET", path, headers={"Accept": accept})

    def wado_rs_metadata(
        self,
        study_uid: str,
        series_uid: Optional[str] = None,
        instance_uid: Optional[str] = None,
    ) -> list:
        path = self.wado_rs_path(study_uid, series_uid, instance_uid) + "/metadata"
        return self.get(path) or []

    def wado_rs_rendered(
        self,
        study_uid: str,
        series_uid: str,
        instance_uid: str,
        frames: Optional[str] = None,
        accept: Optional[str] = None,
        quality: Optional[int] = None,
        viewport: Optional[str] = None,
    ) -> requests.Response:
        path = self.wado_rs_path(study_uid, series_uid, instance_uid, frames) + "/rendered"
        headers = {"Accept": accept} if accept else None
        return self.stream(
            "GET", path, params={"quality": quality, "viewport": viewport}, headers=headers
        )

    def wado_uri(self, params: dict) -> requests.Response:
        params = dict(params, requestType="WADO")
        return self.stream("GET", "wado", params=params)


def client_from_context(ctx: OrthancContext) -> OrthancClient:
    """Default client factory: build a client for the given context."""
    if not ctx.url:
        raise ConfigError(
            f"orthanc URL is required (use 'orthanc config set-context {ctx.name} --url <url>')"
        )
    return OrthancClient(
        ctx.url, username=ctx.username, password=ctx.password, insecure=ctx.insecure
    )
