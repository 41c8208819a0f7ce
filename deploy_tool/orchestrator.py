"""
Deployment orchestration: album directory in, live Pages site out.

Publishing runs strictly in order, except for the track upload stage, which
fans out over a bounded worker pool and joins before anything else happens:

    pre-flight -> project lookup -> bucket lookup/create -> track uploads
    -> CORS -> audio origin (CDN domain + DNS) -> site build -> project create
    -> site upload -> album subdomain DNS

Each remote call is tagged FATAL or BEST_EFFORT. Best-effort failures end up
as warnings on the DeploymentOutcome instead of aborting the run.
"""

import logging
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

from rich.progress import Progress

from album_core.constants import (
    CDN_SUBDOMAIN, CLOUDFLARE_R2_HOST_TEMPLATE, CLOUDFLARE_R2_PUBLIC_URL_TEMPLATE,
    DEFAULT_UPLOAD_CONCURRENCY, MAX_UPLOAD_CONCURRENCY, PAGES_MAX_FILE_SIZE_MB,
)
from album_core.errors import (
    ConfigurationError, ReleaseKitError, TeardownError, UploadAggregateError, ValidationError,
)
from album_core.manifest import load_album
from album_core.models import (
    Album, DeploymentOutcome, DeploymentTarget, DeploymentWarning, FailurePolicy,
    PagesProject, R2Bucket, RemoteCredentials, UploadTask,
)
from deploy_tool.cloudflare_api import CloudflareClient
from deploy_tool.credentials import CredentialsProvider
from deploy_tool.r2_storage import R2ObjectStore
from deploy_tool.site_builder import build_static_site
from deploy_tool.uploader import UploadEngine

logger = logging.getLogger(__name__)

CONFIGURE_HINT = "Run 'release-kit deploy configure' first"


@dataclass
class DeploymentStatus:
    target: DeploymentTarget
    project: Optional[PagesProject] = None
    bucket: Optional[R2Bucket] = None

    @property
    def deployed(self) -> bool:
        return self.project is not None

    @property
    def url(self) -> str:
        return self.target.default_url

    @property
    def custom_domains(self) -> List[str]:
        return list(self.project.domains) if self.project else []


@dataclass
class TeardownReport:
    project_name: str
    bucket_name: str
    project_found: bool = False
    bucket_found: bool = False
    project_deleted: bool = False
    bucket_deleted: bool = False
    objects_deleted: int = 0
    uploads_aborted: int = 0
    cancelled: bool = False
    failures: List[str] = field(default_factory=list)

    @property
    def nothing_to_delete(self) -> bool:
        return not self.project_found and not self.bucket_found


class DeploymentOrchestrator:
    """
    Drives publish, status and teardown for one album.

    Credentials come from an injected CredentialsProvider and are loaded once.
    The Cloudflare client and R2 store are built from them unless injected.
    """

    def __init__(self, credentials_provider: CredentialsProvider,
                 client: Optional[CloudflareClient] = None,
                 object_store: Optional[R2ObjectStore] = None,
                 site_builder: Callable[..., Any] = build_static_site,
                 concurrency: int = DEFAULT_UPLOAD_CONCURRENCY,
                 sleep: Callable[[float], None] = time.sleep,
                 on_step: Optional[Callable[[str], None]] = None):
        if not 1 <= concurrency <= MAX_UPLOAD_CONCURRENCY:
            raise ValidationError(f"Concurrency must be between 1 and {MAX_UPLOAD_CONCURRENCY}")
        self.credentials_provider = credentials_provider
        self.site_builder = site_builder
        self.concurrency = concurrency
        self.sleep = sleep
        self.on_step = on_step
        self._client = client
        self._store = object_store
        self._credentials: Optional[RemoteCredentials] = None

    # Dependencies

    @property
    def credentials(self) -> RemoteCredentials:
        if self._credentials is None:
            creds = self.credentials_provider.load()
            if creds is None:
                raise ConfigurationError(f"No Cloudflare configuration found.\n{CONFIGURE_HINT}")
            self._credentials = creds
        return self._credentials

    @property
    def client(self) -> CloudflareClient:
        if self._client is None:
            creds = self.credentials
            self._client = CloudflareClient(creds.api_token, creds.account_id)
        return self._client

    @property
    def store(self) -> R2ObjectStore:
        if self._store is None:
            creds = self.credentials
            if not creds.has_object_storage:
                raise ConfigurationError(f"R2 access keys are not configured.\n{CONFIGURE_HINT}")
            self._store = R2ObjectStore(creds.account_id, creds.r2_access_key_id, creds.r2_secret_access_key)
        return self._store

    # Helpers

    def _step(self, message: str) -> None:
        logger.info(message)
        if self.on_step:
            self.on_step(message)

    def _call(self, policy: FailurePolicy, step: str, fn: Callable[[], Any],
              outcome: Optional[DeploymentOutcome] = None,
              hint: Optional[str] = None) -> Tuple[bool, Any]:
        """
        Run one remote call under its failure policy.

        Returns:
            (succeeded, result). FATAL failures propagate instead.
        """
        try:
            return True, fn()
        except ReleaseKitError as e:
            if policy is FailurePolicy.FATAL:
                raise
            logger.warning("%s failed: %s", step, e)
            if outcome is not None:
                outcome.warnings.append(DeploymentWarning(step=step, message=str(e), hint=hint))
            return False, None

    @staticmethod
    def plan(album: Album) -> DeploymentTarget:
        """Derive and validate the deployment target before any network call."""
        return album.target.validate()

    @staticmethod
    def collect_upload_tasks(album_dir: Path, album: Album) -> Tuple[List[UploadTask], List[str]]:
        """Build one UploadTask per track on disk; missing files are returned separately."""
        tasks, missing = [], []
        for track in album.tracks:
            path = Path(album_dir) / track.file
            if path.is_file():
                tasks.append(UploadTask.for_file(path, track.title))
            else:
                missing.append(track.file)
        return tasks, missing

    def ensure_project(self, name: str, known: Optional[bool] = None) -> bool:
        """
        Create the Pages project unless it already exists.

        Args:
            name: Project name
            known: Result of an earlier existence check; looked up when None

        Returns:
            True if the project was created by this call
        """
        if known is None:
            _, project = self._call(FailurePolicy.FATAL, "check Pages project",
                                    lambda: self.client.get_project(name))
            known = project is not None
        if known:
            return False
        self._step(f"Creating Cloudflare Pages project {name}")
        self._call(FailurePolicy.FATAL, "create Pages project", lambda: self.client.create_project(name))
        return True

    def _create_cname(self, base_domain: str, name: str, target: str,
                      outcome: DeploymentOutcome, step: str) -> bool:
        ok, zone = self._call(FailurePolicy.BEST_EFFORT, step,
                              lambda: self.client.get_dns_zone(base_domain), outcome,
                              hint="Check that the API token has Zone > Zone > Read")
        if not ok:
            return False
        if zone is None:
            outcome.warnings.append(DeploymentWarning(
                step=step,
                message=f"Domain {base_domain} not found on Cloudflare",
                hint="Add your domain to Cloudflare DNS first",
            ))
            return False
        ok, _ = self._call(FailurePolicy.BEST_EFFORT, step,
                           lambda: self.client.create_dns_record(zone.id, name, target), outcome,
                           hint=f"Create a CNAME {name} -> {target} manually in the Cloudflare dashboard")
        if ok:
            self._step(f"DNS record created: {name} -> {target}")
        return ok

    # Publish

    def _resolve_audio_base_url(self, bucket_name: str, outcome: DeploymentOutcome) -> str:
        creds = self.credentials
        default_url = CLOUDFLARE_R2_PUBLIC_URL_TEMPLATE.format(account_id=creds.account_id)
        if not creds.base_domain:
            return default_url

        cdn_domain = f"{CDN_SUBDOMAIN}.{creds.base_domain}"
        self._step(f"Setting up custom domain {cdn_domain}")
        ok, _ = self._call(FailurePolicy.BEST_EFFORT, "audio custom domain",
                           lambda: self.client.add_custom_domain(bucket_name, cdn_domain), outcome,
                           hint=f"Connect {cdn_domain} to bucket {bucket_name} in the R2 dashboard")
        if not ok:
            return default_url

        r2_host = CLOUDFLARE_R2_HOST_TEMPLATE.format(account_id=creds.account_id)
        if not self._create_cname(creds.base_domain, cdn_domain, r2_host, outcome, "audio DNS record"):
            return default_url
        return f"https://{cdn_domain}"

    def _publish_audio(self, album_dir: Path, album: Album, target: DeploymentTarget,
                       outcome: DeploymentOutcome, progress: Optional[Progress]) -> str:
        bucket_name = target.bucket_name

        self._step(f"Checking R2 bucket {bucket_name}")
        _, bucket = self._call(FailurePolicy.FATAL, "check R2 bucket",
                               lambda: self.client.get_bucket(bucket_name))
        fresh = bucket is None
        if fresh:
            self._step(f"Creating R2 bucket {bucket_name}")
            self._call(FailurePolicy.FATAL, "create R2 bucket", lambda: self.client.create_bucket(bucket_name))

        tasks, missing = self.collect_upload_tasks(album_dir, album)
        for file in missing:
            outcome.skipped_tracks.append(file)
            outcome.warnings.append(DeploymentWarning(
                step="audio upload", message=f"Audio file not found: {file}", hint="Track skipped"))

        self._step(f"Uploading {len(tasks)} audio files to R2")
        engine = UploadEngine(self.store, bucket_name, concurrency=self.concurrency, sleep=self.sleep)
        failed = engine.run(tasks, progress=progress)
        if failed:
            outcome.failures = [f"{t.track_title}: {t.last_error}" for t in failed]
            raise UploadAggregateError(failed)
        outcome.uploaded_tracks = len(tasks)

        if fresh:
            self._step("Configuring R2 public access")
            self._call(FailurePolicy.BEST_EFFORT, "R2 public access",
                       lambda: self.client.configure_bucket_public_access(bucket_name), outcome,
                       hint="Enable public access under R2 > bucket > Settings")

        return self._resolve_audio_base_url(bucket_name, outcome)

    def publish(self, album_dir, album: Optional[Album] = None,
                progress: Optional[Progress] = None) -> DeploymentOutcome:
        """
        Deploy an album directory to Cloudflare Pages.

        Args:
            album_dir: Album directory containing album.toml
            album: Already-loaded manifest (loaded when omitted)
            progress: Optional rich Progress for the upload stage

        Returns:
            DeploymentOutcome with the live URL and any warnings

        Raises:
            ValidationError: Project name cannot be derived
            ConfigurationError: No credentials
            UploadAggregateError: Some tracks exhausted their retries
            ApiError / TransportError: A fatal remote step failed
        """
        album_dir = Path(album_dir)
        if album is None:
            album = load_album(album_dir)
        target = self.plan(album)
        creds = self.credentials
        outcome = DeploymentOutcome(project_name=target.name, live_url=target.default_url)

        self._step(f"Checking deployment status for {target.name}")
        _, project = self._call(FailurePolicy.FATAL, "check Pages project",
                                lambda: self.client.get_project(target.name))
        project_exists = project is not None

        audio_base_url = None
        if creds.has_object_storage:
            audio_base_url = self._publish_audio(album_dir, album, target, outcome, progress)
        else:
            outcome.warnings.append(DeploymentWarning(
                step="audio storage",
                message="R2 not configured - audio bundled with Pages",
                hint=f"Pages rejects files over {PAGES_MAX_FILE_SIZE_MB} MB; add R2 keys with "
                     "'release-kit deploy configure'",
            ))
        outcome.audio_base_url = audio_base_url

        with tempfile.TemporaryDirectory(prefix="release-kit-site-") as build_dir:
            self._step("Building static site")
            self.site_builder(album_dir, build_dir, audio_base_url, album=album)

            outcome.project_created = self.ensure_project(target.name, known=project_exists)

            self._step("Deploying to Cloudflare Pages")
            _, outcome.live_url = self._call(FailurePolicy.FATAL, "upload site",
                                             lambda: self.client.upload_site_bundle(target.name, build_dir))

        if album.subdomain and creds.base_domain:
            full_domain = f"{album.subdomain}.{creds.base_domain}"
            self._step(f"Setting up custom domain {full_domain}")
            if self._create_cname(creds.base_domain, full_domain, target.pages_hostname,
                                  outcome, "site DNS record"):
                outcome.custom_domain_url = f"https://{full_domain}"
        elif album.subdomain:
            outcome.warnings.append(DeploymentWarning(
                step="site DNS record",
                message=f"Subdomain '{album.subdomain}' set but no base domain configured",
                hint="Add a base domain with 'release-kit deploy configure'",
            ))

        return outcome

    # Status

    def status(self, album: Album) -> DeploymentStatus:
        target = self.plan(album)
        _, project = self._call(FailurePolicy.FATAL, "check Pages project",
                                lambda: self.client.get_project(target.name))
        _, bucket = self._call(FailurePolicy.FATAL, "check R2 bucket",
                               lambda: self.client.get_bucket(target.bucket_name))
        return DeploymentStatus(target=target, project=project, bucket=bucket)

    # Teardown

    def _teardown_bucket(self, report: TeardownReport) -> None:
        name = report.bucket_name
        # R2 refuses to delete a non-empty bucket
        try:
            report.objects_deleted, report.uploads_aborted = self.store.empty_bucket(name)
        except ReleaseKitError as e:
            report.failures.append(f"R2 bucket {name}: could not empty bucket: {e}")
            return

        self._step(f"Deleting R2 bucket {name}")
        try:
            self.client.delete_bucket(name)
            report.bucket_deleted = True
        except ReleaseKitError as e:
            report.failures.append(f"R2 bucket {name}: {e}")

    def teardown(self, album: Album, confirm: Optional[Callable[[str], str]] = None,
                 force: bool = False) -> TeardownReport:
        """
        Delete the Pages project and the audio bucket.

        Args:
            album: Loaded manifest
            confirm: Called with the project name; must return it verbatim
            force: Skip the confirmation

        Raises:
            TeardownError: A resource could not be removed (after trying all of them)
        """
        target = self.plan(album)
        report = TeardownReport(project_name=target.name, bucket_name=target.bucket_name)

        if not force:
            answer = confirm(target.name) if confirm else None
            if (answer or "").strip() != target.name:
                report.cancelled = True
                return report

        client = self.client
        try:
            report.project_found = client.get_project(target.name) is not None
        except ReleaseKitError as e:
            report.failures.append(f"Pages project {target.name}: {e}")
        try:
            report.bucket_found = client.get_bucket(target.bucket_name) is not None
        except ReleaseKitError as e:
            report.failures.append(f"R2 bucket {target.bucket_name}: {e}")

        if report.project_found:
            self._step(f"Deleting Pages project {target.name}")
            try:
                client.delete_project(target.name)
                report.project_deleted = True
            except ReleaseKitError as e:
                report.failures.append(f"Pages project {target.name}: {e}")

        if report.bucket_found:
            self._teardown_bucket(report)

        if report.failures:
            raise TeardownError(report.failures, report=report)
        return report
