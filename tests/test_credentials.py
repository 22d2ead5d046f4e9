"""Credential rotation tests.

Covers:
- Parsing the comma-separated configuration string
- Rotation never hands out a failed credential
- Full reset once every credential has failed
- Single-credential configuration is never rotated
"""

import pytest

from hibiscus.services.generation.credentials import CredentialRotator, mask_credential


def test_parses_comma_separated_list_and_drops_blanks():
    rotator = CredentialRotator(" key-a , key-b,, ,key-c ")

    assert rotator.credentials == ["key-a", "key-b", "key-c"]
    assert len(rotator) == 3
    assert rotator.current() == "key-a"


def test_empty_configuration_has_no_current_credential():
    rotator = CredentialRotator("")

    assert rotator.current() is None
    assert not rotator.has_alternatives()


@pytest.mark.parametrize("size", [2, 3, 5])
def test_current_never_returns_failed_credential(size):
    """After N < size failures, current() stays outside the failed set."""
    keys = [f"key-{i}" for i in range(size)]
    rotator = CredentialRotator(",".join(keys))
    failed = set()

    for _ in range(size - 1):
        credential = rotator.current()
        rotator.mark_failed(credential)
        failed.add(credential)
        assert rotator.current() not in failed


def test_all_failed_resets_to_first_credential():
    rotator = CredentialRotator("key-a,key-b,key-c")

    for _ in range(3):
        rotator.mark_failed(rotator.current())

    # The next lookup clears the failed set and starts over
    assert rotator.current() == "key-a"
    rotator.mark_failed("key-a")
    assert rotator.current() == "key-b"


def test_single_credential_mark_failed_is_noop():
    rotator = CredentialRotator("only-key")

    for _ in range(5):
        rotator.mark_failed(rotator.current())
        assert rotator.current() == "only-key"


def test_mark_failed_skips_already_failed_credentials():
    rotator = CredentialRotator("key-a,key-b,key-c")

    rotator.mark_failed("key-b")
    assert rotator.current() == "key-c"
    rotator.mark_failed("key-c")

    assert rotator.current() == "key-a"


def test_configure_replaces_list_and_clears_failures():
    rotator = CredentialRotator("key-a,key-b")
    rotator.mark_failed("key-a")

    rotator.configure("key-x,key-y")

    assert rotator.credentials == ["key-x", "key-y"]
    assert rotator.current() == "key-x"


def test_distinct_count_ignores_duplicates():
    rotator = CredentialRotator("key-a,key-a,key-b")

    assert len(rotator) == 3
    assert rotator.distinct_count == 2


def test_mask_credential_shows_only_last_four():
    assert mask_credential("sk_live_123456789") == "...6789"
    assert mask_credential(None) is None
