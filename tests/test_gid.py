# ============================================================
# Tests : tests/test_gid.py
# Objet : Identifiant global (composition, décomposition, hôte distant).
# ============================================================

from __future__ import annotations

import pytest

from syncmesh.domain.errors import IdentityError
from syncmesh.domain.gid import (
    is_remote_gid,
    is_valid_gid,
    localize_gid,
    make_gid,
    nice_url,
    parse_gid,
)


def test_make_and_parse_local_gid():
    gid = make_gid(2, 57)
    assert gid == "2-57"
    assert parse_gid(gid) == (2, 57, "")


def test_remote_host_keeps_dashes():
    gid = make_gid(3, 12, "https://my-remote.example/sub/")
    assert gid == "3-12-my-remote.example/sub"
    assert parse_gid(gid) == (3, 12, "my-remote.example/sub")


@pytest.mark.parametrize("bad", ["", None, "57", "a-57", "2-x", "2--57"])
def test_parse_rejects_malformed(bad):
    with pytest.raises(IdentityError):
        parse_gid(bad)
    assert not is_valid_gid(bad)


def test_nice_url_strips_protocol_and_slash():
    assert nice_url("https://www.example.com/") == "www.example.com"
    assert nice_url("http://b.example/fr/") == "b.example/fr"
    assert nice_url(None) == ""


def test_remote_detection_and_localization():
    assert is_remote_gid("2-57-b.example", "a.example")
    assert not is_remote_gid("2-57-a.example", "https://a.example")
    assert not is_remote_gid("2-57", "a.example")
    assert localize_gid("2-57-a.example", "a.example") == "2-57"
    assert localize_gid("2-57-b.example", "a.example") == "2-57-b.example"
