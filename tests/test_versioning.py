import pytest

from update_server.core.errors import ValidationError
from update_server.services.versioning import compare_versions, require_client_version, require_release_version


@pytest.mark.parametrize("a, b, expected", [
    ("1.2", "1.2.0", 0),
    ("1.10.0", "1.9.0", 1),
    ("2.0.0", "1.9.9", 1),
    ("1.0.0", "1.0.1", -1),
    ("1.0.0.1", "1.0.0", 1),
    ("01.2.3", "1.2.3", 0),
])
def test_compare_versions(a, b, expected):
    assert compare_versions(a, b) == expected
    assert compare_versions(b, a) == -expected


def test_release_version_requires_three_components():
    assert require_release_version("1.3.2", "currentVersion") == "1.3.2"
    for bad in ("1.3", "1.3.2.1", "v1.3.2", "1.a.2", "", None):
        with pytest.raises(ValidationError) as exc:
            require_release_version(bad, "currentVersion")
        assert exc.value.message.startswith("currentVersion:")


def test_client_version_accepts_any_dotted_numeric():
    assert require_client_version("1.2") == "1.2"
    assert require_client_version("3") == "3"
    with pytest.raises(ValidationError, match="Missing required field"):
        require_client_version("")
    with pytest.raises(ValidationError):
        require_client_version("1..2")
    with pytest.raises(ValidationError):
        require_client_version("1.2-beta")
