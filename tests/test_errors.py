"""Test the error taxonomy."""

import errno

import pytest

from filestore.errors import (
    CancelledError,
    CleanupError,
    ErrorKind,
    FileStoreError,
    InvalidHashError,
    NotFoundError,
    TransientIOError,
    translate_os_error,
)


class TestKinds:
    """Test that each error carries its kind."""

    @pytest.mark.parametrize("cls,kind", [
        (NotFoundError, ErrorKind.NOT_FOUND),
        (TransientIOError, ErrorKind.TRANSIENT_IO),
        (CancelledError, ErrorKind.CANCELLED),
    ])
    def test_kind(self, cls, kind):
        err = cls("boom")
        assert err.kind == kind
        assert isinstance(err, FileStoreError)

    def test_invalid_hash_message(self):
        err = InvalidHashError("../x", "bad hash")
        assert err.kind == ErrorKind.INVALID_HASH
        assert err.hash == "../x"
        assert str(err) == "bad hash: '../x'"


class TestWithContext:
    """Test adding context without losing the kind."""

    def test_preserves_class_and_kind(self):
        err = NotFoundError("object does not exist")
        wrapped = err.with_context("fetching abc")

        assert type(wrapped) is NotFoundError
        assert wrapped.kind == ErrorKind.NOT_FOUND
        assert str(wrapped) == "fetching abc: object does not exist"
        assert wrapped.__cause__ is err

    def test_nested_context(self):
        err = TransientIOError("reset").with_context("uploading").with_context("storing")
        assert str(err) == "storing: uploading: reset"
        assert isinstance(err, TransientIOError)

    def test_keeps_attributes(self):
        wrapped = InvalidHashError("zz").with_context("removing")

        assert isinstance(wrapped, InvalidHashError)
        assert wrapped.hash == "zz"
        assert str(wrapped).startswith("removing: invalid hash")

    def test_cleanup_error(self):
        original = TransientIOError("copy failed")
        cleanup = TransientIOError("delete failed")
        wrapped = CleanupError(original, cleanup).with_context("storing")

        assert isinstance(wrapped, CleanupError)
        assert wrapped.original is original
        assert wrapped.cleanup is cleanup
        assert str(wrapped).startswith("storing: copy failed")


class TestCleanupError:
    """Test the aggregate of an operation error and its cleanup error."""

    def test_both_errors_reported(self):
        original = TransientIOError("rename failed")
        cleanup = TransientIOError("unlink failed")

        err = CleanupError(original, cleanup)

        assert err.errors == (original, cleanup)
        assert err.__cause__ is original
        assert "rename failed" in str(err)
        assert "unlink failed" in str(err)
        assert err.root_kind() == ErrorKind.TRANSIENT_IO

    def test_root_kind_of_foreign_error(self):
        err = CleanupError(KeyboardInterrupt(), TransientIOError("unlink failed"))
        assert err.root_kind() is None

    def test_matches_by_kind(self):
        err = CleanupError(CancelledError("cancelled"), TransientIOError("unlink failed"))
        assert err.kind == ErrorKind.CLEANUP_FAILED
        assert err.root_kind() == ErrorKind.CANCELLED


class TestTranslateOSError:
    """Test OSError mapping."""

    def test_file_not_found(self):
        exc = FileNotFoundError(errno.ENOENT, "No such file")
        err = translate_os_error(exc, "opening abc")

        assert isinstance(err, NotFoundError)
        assert str(err) == "opening abc: file does not exist"
        assert err.__cause__ is exc

    def test_other_errors_are_transient(self):
        exc = PermissionError(errno.EACCES, "Permission denied")
        err = translate_os_error(exc, "renaming")

        assert isinstance(err, TransientIOError)
        assert "Permission denied" in str(err)
