import pytest

from pushgate.git.refs import NULL_SHA, RefType, UnrecognizedRefType, classify_ref, is_null_sha


@pytest.mark.parametrize(
    "ref_path,expected",
    [
        ("refs/heads/main", (RefType.BRANCH, "main")),
        ("refs/heads/feature/login", (RefType.BRANCH, "feature/login")),
        ("refs/tags/v1.0", (RefType.TAG, "v1.0")),
    ],
)
def test_classify_ref(ref_path, expected):
    assert classify_ref(ref_path) == expected


@pytest.mark.parametrize("ref_path", ["refs/notes/commits", "main", "refs/heads/", "", "refs/remotes/origin/main"])
def test_unrecognized_refs(ref_path):
    with pytest.raises(UnrecognizedRefType):
        classify_ref(ref_path)


def test_null_sha():
    assert is_null_sha(NULL_SHA)
    assert is_null_sha("0000000")
    assert not is_null_sha("")
    assert not is_null_sha("c0ffee1")
