import dataclasses

import pytest

from album_core.errors import (
    ApiError, ConfigurationError, TeardownError, TransportError, UploadAggregateError, ValidationError,
)
from album_core.manifest import load_album
from album_core.models import Album, AlbumTrack
from deploy_tool.credentials import InMemoryCredentials
from deploy_tool.orchestrator import DeploymentOrchestrator

from conftest import ACCOUNT_ID, FakeObjectStore

PROJECT = "the-midnight-crew-night-drive"
BUCKET = f"{PROJECT}-audio"


class RecordingBuilder:
    def __init__(self):
        self.calls = []

    def __call__(self, album_dir, output_dir, audio_base_url=None, album=None):
        self.calls.append((album_dir, output_dir, audio_base_url))
        return len(album.tracks)


def make_orchestrator(credentials, client, store, builder=None, **kwargs):
    return DeploymentOrchestrator(
        InMemoryCredentials(credentials),
        client=client,
        object_store=store,
        site_builder=builder or RecordingBuilder(),
        sleep=lambda s: None,
        **kwargs,
    )


def test_publish_full_pipeline(album_dir, credentials, fake_client, fake_store):
    builder = RecordingBuilder()
    orchestrator = make_orchestrator(credentials, fake_client, fake_store, builder)

    outcome = orchestrator.publish(album_dir)

    assert outcome.project_name == PROJECT
    assert outcome.live_url == f"https://abc123.{PROJECT}.pages.dev"
    assert outcome.audio_base_url == "https://cdn.example.com"
    assert outcome.custom_domain_url == "https://nightdrive.example.com"
    assert outcome.project_created
    assert outcome.uploaded_tracks == 3
    assert outcome.warnings == []
    assert {key for _, key, _ in fake_store.uploaded} == {
        "audio/01-intro.flac", "audio/02-highway.mp3", "audio/03-dawn.wav"}
    assert builder.calls[0][2] == "https://cdn.example.com"

    names = fake_client.call_names()
    assert names == [
        "get_project", "get_bucket", "create_bucket", "configure_bucket_public_access",
        "add_custom_domain", "get_dns_zone", "create_dns_record",
        "create_project", "upload_site_bundle", "get_dns_zone", "create_dns_record",
    ]
    dns_calls = [c for c in fake_client.calls if c[0] == "create_dns_record"]
    assert dns_calls[0][1:] == ("zone123", "cdn.example.com", f"{ACCOUNT_ID}.r2.cloudflarestorage.com")
    assert dns_calls[1][1:] == ("zone123", "nightdrive.example.com", f"{PROJECT}.pages.dev")


def test_publish_existing_resources_is_idempotent(album_dir, credentials, fake_client, fake_store):
    fake_client.projects.add(PROJECT)
    fake_client.buckets.add(BUCKET)
    orchestrator = make_orchestrator(credentials, fake_client, fake_store)

    outcome = orchestrator.publish(album_dir)

    names = fake_client.call_names()
    assert "create_project" not in names
    assert "create_bucket" not in names
    assert "configure_bucket_public_access" not in names
    assert not outcome.project_created


def test_dns_failure_is_a_warning(album_dir, credentials, fake_client, fake_store):
    fake_client.failures["create_dns_record"] = ApiError(
        "create DNS record", "cdn.example.com", 400, ["Record already exists"])
    orchestrator = make_orchestrator(credentials, fake_client, fake_store)

    outcome = orchestrator.publish(album_dir)

    assert outcome.live_url == f"https://abc123.{PROJECT}.pages.dev"
    assert outcome.audio_base_url == f"https://pub-{ACCOUNT_ID}.r2.dev"
    assert outcome.custom_domain_url is None
    assert len(outcome.warnings) == 2
    assert all("Record already exists" in w.message for w in outcome.warnings)
    assert all(w.hint for w in outcome.warnings)


def test_custom_domain_failure_falls_back_to_public_bucket_url(album_dir, credentials, fake_client, fake_store):
    fake_client.failures["add_custom_domain"] = TransportError("attach custom domain", BUCKET, OSError("reset"))
    orchestrator = make_orchestrator(credentials, fake_client, fake_store)

    outcome = orchestrator.publish(album_dir)

    assert outcome.audio_base_url == f"https://pub-{ACCOUNT_ID}.r2.dev"
    assert [w.step for w in outcome.warnings] == ["audio custom domain"]


def test_missing_zone_is_a_warning(album_dir, credentials, fake_client, fake_store):
    fake_client.zones.clear()
    orchestrator = make_orchestrator(credentials, fake_client, fake_store)

    outcome = orchestrator.publish(album_dir)

    assert "create_dns_record" not in fake_client.call_names()
    assert any("not found on Cloudflare" in w.message for w in outcome.warnings)


def test_cors_failure_is_a_warning(album_dir, credentials, fake_client, fake_store):
    fake_client.failures["configure_bucket_public_access"] = ApiError("configure CORS", BUCKET, 403, ["Forbidden"])
    orchestrator = make_orchestrator(credentials, fake_client, fake_store)

    outcome = orchestrator.publish(album_dir)

    assert outcome.warnings[0].step == "R2 public access"
    assert "upload_site_bundle" in fake_client.call_names()


def test_fatal_step_aborts(album_dir, credentials, fake_client, fake_store):
    fake_client.failures["create_bucket"] = ApiError("create R2 bucket", BUCKET, 403, ["Not entitled"])
    orchestrator = make_orchestrator(credentials, fake_client, fake_store)

    with pytest.raises(ApiError, match="Not entitled"):
        orchestrator.publish(album_dir)
    assert fake_store.uploaded == []
    assert "upload_site_bundle" not in fake_client.call_names()


def test_upload_failure_names_the_track(album_dir, credentials, fake_client):
    store = FakeObjectStore(fail_times={"audio/02-highway.mp3": 99})
    orchestrator = make_orchestrator(credentials, fake_client, store)

    with pytest.raises(UploadAggregateError) as exc_info:
        orchestrator.publish(album_dir)

    assert "Highway" in str(exc_info.value)
    assert [t.track_title for t in exc_info.value.failed_tasks] == ["Highway"]
    assert len(store.uploaded) == 2
    assert "upload_site_bundle" not in fake_client.call_names()


def test_missing_track_file_is_skipped(album_dir, credentials, fake_client, fake_store):
    (album_dir / "audio" / "03-dawn.wav").unlink()
    orchestrator = make_orchestrator(credentials, fake_client, fake_store)

    outcome = orchestrator.publish(album_dir)

    assert outcome.uploaded_tracks == 2
    assert outcome.skipped_tracks == ["audio/03-dawn.wav"]
    assert any("03-dawn.wav" in w.message for w in outcome.warnings)


def test_publish_without_r2_keys_bundles_audio(album_dir, credentials, fake_client):
    creds = dataclasses.replace(credentials, r2_access_key_id=None, r2_secret_access_key=None, base_domain=None)
    builder = RecordingBuilder()
    orchestrator = make_orchestrator(creds, fake_client, None, builder)

    outcome = orchestrator.publish(album_dir)

    assert outcome.audio_base_url is None
    assert builder.calls[0][2] is None
    assert "get_bucket" not in fake_client.call_names()
    assert any("25 MB" in (w.hint or "") for w in outcome.warnings)
    assert any("no base domain" in w.message for w in outcome.warnings)


def test_publish_without_credentials(album_dir, fake_client):
    orchestrator = DeploymentOrchestrator(InMemoryCredentials(None), client=fake_client)
    with pytest.raises(ConfigurationError, match="configure"):
        orchestrator.publish(album_dir)
    assert fake_client.calls == []


def test_invalid_name_fails_before_network(album_dir, credentials, fake_client, fake_store):
    album = Album(title="???", artist_name="!!!", tracks=[AlbumTrack(file="audio/01-intro.flac", title="x")])
    orchestrator = make_orchestrator(credentials, fake_client, fake_store)
    with pytest.raises(ValidationError):
        orchestrator.publish(album_dir, album=album)
    assert fake_client.calls == []


def test_ensure_project_twice_creates_once(credentials, fake_client, fake_store):
    orchestrator = make_orchestrator(credentials, fake_client, fake_store)
    assert orchestrator.ensure_project(PROJECT) is True
    assert orchestrator.ensure_project(PROJECT) is False
    assert fake_client.call_names().count("create_project") == 1


def test_concurrency_is_validated(credentials):
    with pytest.raises(ValidationError):
        DeploymentOrchestrator(InMemoryCredentials(credentials), concurrency=0)


def test_status(album_dir, credentials, fake_client, fake_store):
    fake_client.projects.add(PROJECT)
    orchestrator = make_orchestrator(credentials, fake_client, fake_store)

    info = orchestrator.status(load_album(album_dir))

    assert info.deployed
    assert info.url == f"https://{PROJECT}.pages.dev"
    assert info.custom_domains == [f"{PROJECT}.pages.dev"]
    assert info.bucket is None


def test_teardown_requires_exact_name(album_dir, credentials, fake_client, fake_store):
    fake_client.projects.add(PROJECT)
    orchestrator = make_orchestrator(credentials, fake_client, fake_store)

    report = orchestrator.teardown(load_album(album_dir), confirm=lambda name: "yes")

    assert report.cancelled
    assert fake_client.calls == []
    assert PROJECT in fake_client.projects


def test_teardown_empties_bucket_before_deleting(album_dir, credentials, fake_client):
    fake_client.projects.add(PROJECT)
    fake_client.buckets.add(BUCKET)
    events = []
    store = FakeObjectStore(objects=["audio/a.mp3", "audio/b.mp3"])
    real_empty = store.empty_bucket
    store.empty_bucket = lambda bucket: events.append("empty") or real_empty(bucket)
    real_delete = fake_client.delete_bucket
    fake_client.delete_bucket = lambda name: events.append("delete") or real_delete(name)
    orchestrator = make_orchestrator(credentials, fake_client, store)

    report = orchestrator.teardown(load_album(album_dir), confirm=lambda name: name)

    assert events == ["empty", "delete"]
    assert report.project_deleted and report.bucket_deleted
    assert report.objects_deleted == 2
    assert not fake_client.projects and not fake_client.buckets


def test_teardown_continues_after_project_failure(album_dir, credentials, fake_client, fake_store):
    fake_client.projects.add(PROJECT)
    fake_client.buckets.add(BUCKET)
    fake_client.failures["delete_project"] = ApiError("delete Pages project", PROJECT, 500, ["Boom"])
    orchestrator = make_orchestrator(credentials, fake_client, fake_store)

    with pytest.raises(TeardownError) as exc_info:
        orchestrator.teardown(load_album(album_dir), force=True)

    report = exc_info.value.report
    assert not report.project_deleted
    assert report.bucket_deleted
    assert any("Boom" in f for f in exc_info.value.failures)


def test_teardown_skips_bucket_delete_when_emptying_fails(album_dir, credentials, fake_client):
    fake_client.buckets.add(BUCKET)
    creds = dataclasses.replace(credentials, r2_access_key_id=None, r2_secret_access_key=None)
    orchestrator = make_orchestrator(creds, fake_client, None)

    with pytest.raises(TeardownError, match="could not empty bucket"):
        orchestrator.teardown(load_album(album_dir), force=True)
    assert "delete_bucket" not in fake_client.call_names()


def test_teardown_nothing_to_delete(album_dir, credentials, fake_client, fake_store):
    orchestrator = make_orchestrator(credentials, fake_client, fake_store)
    report = orchestrator.teardown(load_album(album_dir), force=True)
    assert report.nothing_to_delete
    assert fake_client.call_names() == ["get_project", "get_bucket"]
