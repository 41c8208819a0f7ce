"""
Cloudflare REST API client for Pages, R2 bucket management and DNS.

Every endpoint answers with the same envelope::

    {"success": bool, "errors": [{"code": int, "message": str}], "messages": [], "result": ...}

CloudflareResponse models that envelope once; the client methods only say
which payload type they expect back.
"""

import hashlib
import json
import logging
import os
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

import requests

from album_core.constants import (
    CLOUDFLARE_API_BASE, CORS_MAX_AGE_SECONDS, DEFAULT_NETWORK_TIMEOUT,
    DNS_RECORD_TYPE, PAGES_HOSTNAME_TEMPLATE, PAGES_PRODUCTION_BRANCH,
)
from album_core.errors import ApiError, ReleaseKitError, TransportError
from album_core.models import DnsRecord, DnsZone, PagesProject, R2Bucket

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CloudflareResponse(Generic[T]):
    """Parsed API envelope with a typed result."""
    success: bool
    errors: List[Dict[str, Any]] = field(default_factory=list)
    messages: List[Any] = field(default_factory=list)
    result: Optional[T] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any],
                     parse: Optional[Callable[[Any], T]] = None) -> 'CloudflareResponse[T]':
        raw_result = payload.get("result")
        success = bool(payload.get("success"))
        result = None
        if success and raw_result is not None:
            result = parse(raw_result) if parse else raw_result
        return cls(
            success=success,
            errors=list(payload.get("errors") or []),
            messages=list(payload.get("messages") or []),
            result=result,
        )

    @property
    def error_messages(self) -> List[str]:
        return [str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in self.errors]

    def unwrap(self, operation: str, resource: Optional[str] = None,
               status_code: Optional[int] = None) -> Optional[T]:
        """Return the result, or raise ApiError carrying the platform's messages."""
        if not self.success:
            raise ApiError(operation, resource, status_code, self.error_messages)
        return self.result


def _first_zone(zones: List[Dict[str, Any]]) -> Optional[DnsZone]:
    return DnsZone.from_dict(zones[0]) if zones else None


class CloudflareClient:
    """
    Stateless wrapper over the Cloudflare v4 API.

    Auth header, timeout and envelope unwrapping live here so the
    orchestrator only deals in typed results and ReleaseKitError subclasses.
    """

    def __init__(self, api_token: str, account_id: str,
                 session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_NETWORK_TIMEOUT,
                 base_url: str = CLOUDFLARE_API_BASE):
        self.account_id = account_id
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")

        if session is None:
            session = requests.Session()
            # No transport-level retries: create calls are not idempotent
            adapter = requests.adapters.HTTPAdapter(pool_connections=4, pool_maxsize=4, max_retries=0)
            session.mount('https://', adapter)
        session.headers.update({"Authorization": f"Bearer {api_token}"})
        self.session = session

    # Transport

    def _account_url(self, path: str) -> str:
        return f"{self.base_url}/accounts/{self.account_id}{path}"

    def _send(self, method: str, url: str, operation: str, resource: Optional[str],
              **kwargs) -> requests.Response:
        logger.debug("%s %s", method, url)
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransportError(operation, resource, e)

    def _request(self, method: str, url: str, operation: str,
                 resource: Optional[str] = None,
                 parse: Optional[Callable[[Any], T]] = None,
                 not_found_is_none: bool = False,
                 **kwargs) -> Optional[T]:
        response = self._send(method, url, operation, resource, **kwargs)

        if not_found_is_none and response.status_code == 404:
            return None

        try:
            payload = response.json()
        except ValueError:
            raise ApiError(operation, resource, response.status_code,
                           [response.text[:200] or "Empty response body"])

        envelope = CloudflareResponse.from_payload(payload, parse)
        return envelope.unwrap(operation, resource, response.status_code)

    # Pages projects

    def get_project(self, name: str) -> Optional[PagesProject]:
        """Get a Pages project by name; None when it does not exist."""
        return self._request(
            "GET", self._account_url(f"/pages/projects/{name}"),
            "look up Pages project", name,
            parse=PagesProject.from_dict, not_found_is_none=True,
        )

    def create_project(self, name: str) -> PagesProject:
        """Create a Pages project. Callers decide whether one already exists."""
        project = self._request(
            "POST", self._account_url("/pages/projects"),
            "create Pages project", name,
            parse=PagesProject.from_dict,
            json={"name": name, "production_branch": PAGES_PRODUCTION_BRANCH},
        )
        if project is None:
            raise ApiError("create Pages project", name, messages=["No project returned from API"])
        return project

    def delete_project(self, name: str) -> None:
        self._request("DELETE", self._account_url(f"/pages/projects/{name}"),
                      "delete Pages project", name)

    def upload_site_bundle(self, project: str, directory) -> str:
        """
        Upload a built site as a new deployment (Direct Upload).

        Args:
            project: Pages project name
            directory: Built site directory

        Returns:
            Deployment URL reported by the API, or https://<project>.pages.dev
        """
        directory = Path(directory)
        try:
            manifest = build_site_manifest(directory)
            zip_path = create_deployment_zip(directory)
        except OSError as e:
            raise ReleaseKitError(f"Failed to package site in {directory}: {e}") from e
        operation = "upload site to Pages project"
        try:
            with open(zip_path, "rb") as bundle:
                files = {"file": ("deployment.zip", bundle, "application/zip")}
                data = {"manifest": json.dumps(manifest), "branch": PAGES_PRODUCTION_BRANCH}
                result = self._request(
                    "POST", self._account_url(f"/pages/projects/{project}/deployments"),
                    operation, project, files=files, data=data,
                )
        finally:
            os.remove(zip_path)

        url = result.get("url") if isinstance(result, dict) else None
        return url or f"https://{PAGES_HOSTNAME_TEMPLATE.format(project=project)}"

    # R2 buckets

    def get_bucket(self, name: str) -> Optional[R2Bucket]:
        return self._request(
            "GET", self._account_url(f"/r2/buckets/{name}"),
            "look up R2 bucket", name,
            parse=R2Bucket.from_dict, not_found_is_none=True,
        )

    def create_bucket(self, name: str) -> R2Bucket:
        bucket = self._request(
            "POST", self._account_url("/r2/buckets"),
            "create R2 bucket", name,
            parse=R2Bucket.from_dict, json={"name": name},
        )
        if bucket is None:
            raise ApiError("create R2 bucket", name, messages=["No bucket returned from API"])
        return bucket

    def delete_bucket(self, name: str) -> None:
        self._request("DELETE", self._account_url(f"/r2/buckets/{name}"),
                      "delete R2 bucket", name)

    def configure_bucket_public_access(self, name: str) -> None:
        """Allow browsers to GET/HEAD objects from any origin."""
        cors = {
            "rules": [{
                "allowed": {"origins": ["*"], "methods": ["GET", "HEAD"], "headers": ["*"]},
                "maxAgeSeconds": CORS_MAX_AGE_SECONDS,
            }],
        }
        self._request("PUT", self._account_url(f"/r2/buckets/{name}/cors"),
                      "configure CORS for R2 bucket", name, json=cors)

    def add_custom_domain(self, bucket: str, domain: str) -> None:
        self._request("POST", self._account_url(f"/r2/buckets/{bucket}/domains"),
                      "attach custom domain to R2 bucket", bucket,
                      json={"domain": domain})

    # DNS

    def get_dns_zone(self, domain: str) -> Optional[DnsZone]:
        """Find the zone for a domain; None when it is not on this account."""
        return self._request(
            "GET", f"{self.base_url}/zones",
            "look up DNS zone", domain,
            parse=_first_zone, params={"name": domain},
        )

    def create_dns_record(self, zone_id: str, name: str, target: str) -> DnsRecord:
        """Create a proxied CNAME record."""
        record = DnsRecord(type=DNS_RECORD_TYPE, name=name, content=target, proxied=True)
        created = self._request(
            "POST", f"{self.base_url}/zones/{zone_id}/dns_records",
            "create DNS record", name,
            parse=DnsRecord.from_dict, json=record.to_payload(),
        )
        if created is None:
            raise ApiError("create DNS record", name, messages=["No DNS record returned from API"])
        return created


def iter_site_files(directory: Path):
    """Yield (relative POSIX path, absolute path) for every file, sorted."""
    for root, dirs, filenames in os.walk(directory):
        dirs.sort()
        for filename in sorted(filenames):
            path = Path(root) / filename
            yield path.relative_to(directory).as_posix(), path


def file_sha256(path: Path, chunk_size: int = 1024 * 1024) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def build_site_manifest(directory: Path) -> Dict[str, str]:
    """Map '/relative/path' to the SHA-256 of each file's content."""
    return {f"/{rel}": file_sha256(path) for rel, path in iter_site_files(Path(directory))}


def create_deployment_zip(directory: Path) -> str:
    """
    Zip a build directory, preserving relative paths.

    Returns:
        Path of a temporary zip file; the caller removes it
    """
    fd, zip_path = tempfile.mkstemp(prefix="release-kit-deploy-", suffix=".zip")
    os.close(fd)
    try:
        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for rel, path in iter_site_files(Path(directory)):
                zf.write(path, arcname=rel)
    except BaseException:
        os.remove(zip_path)
        raise
    return zip_path
