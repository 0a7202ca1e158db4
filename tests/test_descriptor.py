"""Tests for the Backend Descriptor Builder."""

import pytest

from stateward.descriptor import bucket_name, build_descriptor, render_backend_config, state_key
from stateward.errors import ValidationError


def test_phased_descriptor():
    descriptor = build_descriptor("dev", "infra", region="fr-par")
    assert descriptor.bucket == "state-dev"
    assert descriptor.key == "dev/infra/state"
    assert descriptor.region == "fr-par"
    assert descriptor.endpoint == "https://s3.fr-par.scw.cloud"


def test_legacy_descriptor():
    descriptor = build_descriptor("staging", region="nl-ams")
    assert descriptor.key == "staging/state"
    assert descriptor.endpoint == "https://s3.nl-ams.scw.cloud"


def test_one_bucket_per_environment():
    assert bucket_name("dev") == "state-dev"
    assert build_descriptor("dev", "infra", region="fr-par").bucket == \
        build_descriptor("dev", "coder", region="fr-par").bucket


def test_state_key():
    assert state_key("prod", "coder") == "prod/coder/state"
    assert state_key("prod") == "prod/state"


def test_explicit_endpoint_wins():
    descriptor = build_descriptor("dev", region="fr-par", endpoint="http://minio:9000")
    assert descriptor.endpoint == "http://minio:9000"


def test_endpoint_template():
    descriptor = build_descriptor("dev", region="pl-waw", endpoint_template="https://objects.{region}.example")
    assert descriptor.endpoint == "https://objects.pl-waw.example"


def test_deterministic():
    first = build_descriptor("dev", "infra", region="fr-par")
    second = build_descriptor("dev", "infra", region="fr-par")
    assert first == second
    assert render_backend_config(first, "dev", "infra") == render_backend_config(second, "dev", "infra")


@pytest.mark.parametrize("environment,phase", [("dev/x", None), ("dev", "infra/x"), ("dev", "..")])
def test_rejects_path_separators(environment, phase):
    with pytest.raises(ValidationError):
        build_descriptor(environment, phase, region="fr-par")


def test_region_required():
    with pytest.raises(ValidationError, match="Region"):
        build_descriptor("dev", region="")


def test_rendered_backend_block():
    descriptor = build_descriptor("dev", "coder", region="fr-par")
    text = render_backend_config(descriptor, "dev", "coder")

    assert 'backend "s3"' in text
    assert 'bucket = "state-dev"' in text
    assert 'key    = "dev/coder/state"' in text
    assert 's3 = "https://s3.fr-par.scw.cloud"' in text
    assert "skip_credentials_validation = true" in text
    assert "environment dev, phase coder" in text
    assert "no state locking" in text
