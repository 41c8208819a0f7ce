"""Pytest configuration and fixtures."""

import threading

import pytest

from album_core.errors import ApiError, TransportError
from album_core.models import DnsRecord, DnsZone, PagesProject, R2Bucket, RemoteCredentials

API_TOKEN = "a" * 20 + "B" * 10 + "_-" * 5
ACCOUNT_ID = "0123456789abcdef0123456789abcdef"
ACCESS_KEY_ID = "fedcba9876543210fedcba9876543210"
SECRET_ACCESS_KEY = "0123456789abcdef" * 4

ALBUM_TOML = """
[album]
title = "Night Drive"
summary = "Synths & <late> roads"
release_date = "2024-05-01"
genre = ["electronic", "synthwave"]
license = "CC-BY-4.0"

[artist]
name = "The Midnight Crew"
url = "https://example.com"

[hosting.cloudflare]
subdomain = "nightdrive"

[[track]]
file = "audio/01-intro.flac"
title = "Intro"
duration = "1:05"

[[track]]
file = "audio/02-highway.mp3"
title = "Highway"
duration = "4:32"

[[track]]
file = "audio/03-dawn.wav"
title = "Dawn"
"""


class FakeCloudflareClient:
    """In-memory stand-in for CloudflareClient that records every call."""

    def __init__(self, projects=None, buckets=None, zones=None):
        self.projects = set(projects or [])
        self.buckets = set(buckets or [])
        self.zones = dict(zones or {})
        self.calls = []
        self.failures = {}

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.failures:
            raise self.failures[name]

    def call_names(self):
        return [call[0] for call in self.calls]

    def get_project(self, name):
        self._record("get_project", name)
        return PagesProject(name=name, domains=[f"{name}.pages.dev"]) if name in self.projects else None

    def create_project(self, name):
        self._record("create_project", name)
        self.projects.add(name)
        return PagesProject(name=name)

    def delete_project(self, name):
        self._record("delete_project", name)
        self.projects.discard(name)

    def upload_site_bundle(self, project, directory):
        self._record("upload_site_bundle", project)
        return f"https://abc123.{project}.pages.dev"

    def get_bucket(self, name):
        self._record("get_bucket", name)
        return R2Bucket(name=name) if name in self.buckets else None

    def create_bucket(self, name):
        self._record("create_bucket", name)
        self.buckets.add(name)
        return R2Bucket(name=name)

    def delete_bucket(self, name):
        self._record("delete_bucket", name)
        self.buckets.discard(name)

    def configure_bucket_public_access(self, name):
        self._record("configure_bucket_public_access", name)

    def add_custom_domain(self, bucket, domain):
        self._record("add_custom_domain", bucket, domain)

    def get_dns_zone(self, domain):
        self._record("get_dns_zone", domain)
        zone_id = self.zones.get(domain)
        return DnsZone(id=zone_id, name=domain) if zone_id else None

    def create_dns_record(self, zone_id, name, target):
        self._record("create_dns_record", zone_id, name, target)
        return DnsRecord(type="CNAME", name=name, content=target, id="rec1")


class FakeObjectStore:
    """Stand-in for R2ObjectStore; fail_times maps key -> failures before success."""

    def __init__(self, fail_times=None, objects=None, transport_failures=False):
        self.fail_times = dict(fail_times or {})
        self.transport_failures = transport_failures
        self.objects = list(objects or [])
        self.uploaded = []
        self.calls = []
        self.attempts = {}
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def upload_object(self, bucket, local_path, key, content_type):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.attempts[key] = self.attempts.get(key, 0) + 1
            attempt = self.attempts[key]
        try:
            if attempt <= self.fail_times.get(key, 0):
                if self.transport_failures:
                    raise TransportError("upload object", f"{bucket}/{key}", ConnectionResetError("connection reset"))
                raise ApiError("upload object", f"{bucket}/{key}", 500, ["Internal error"])
            with self._lock:
                self.uploaded.append((bucket, key, content_type))
        finally:
            with self._lock:
                self.active -= 1

    def empty_bucket(self, bucket):
        self.calls.append(("empty_bucket", bucket))
        deleted = len(self.objects)
        self.objects = []
        return deleted, 0


@pytest.fixture
def album_dir(tmp_path):
    """Album directory with a manifest, audio files and cover art."""
    root = tmp_path / "night-drive"
    (root / "audio").mkdir(parents=True)
    (root / "artwork").mkdir()
    (root / "notes").mkdir()
    (root / "album.toml").write_text(ALBUM_TOML, encoding="utf-8")
    (root / "audio" / "01-intro.flac").write_bytes(b"fLaC" + b"\0" * 64)
    (root / "audio" / "02-highway.mp3").write_bytes(b"ID3" + b"\0" * 64)
    (root / "audio" / "03-dawn.wav").write_bytes(b"RIFF" + b"\0" * 64)
    (root / "artwork" / "cover.jpg").write_bytes(b"\xff\xd8\xff")
    (root / "notes" / "liner.md").write_text("Recorded at night.", encoding="utf-8")
    return root


@pytest.fixture
def credentials():
    return RemoteCredentials(
        api_token=API_TOKEN,
        account_id=ACCOUNT_ID,
        base_domain="example.com",
        r2_access_key_id=ACCESS_KEY_ID,
        r2_secret_access_key=SECRET_ACCESS_KEY,
    )


@pytest.fixture
def fake_client():
    return FakeCloudflareClient(zones={"example.com": "zone123"})


@pytest.fixture
def fake_store():
    return FakeObjectStore()
