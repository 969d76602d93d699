"""Tests for wren.errors: the error, redirect and fail helpers."""

import pytest

from wren.errors import ActionFailure, HttpError, Redirect, WrenError, error, fail, redirect


class TestError:
    def test_message_string(self) -> None:
        err = error(404, "Post not found")
        assert isinstance(err, HttpError)
        assert err.body == {"message": "Post not found"}
        assert str(err) == "404: Post not found"

    def test_default_body(self) -> None:
        assert error(503).body == {"message": "Error: 503"}

    def test_custom_body(self) -> None:
        assert error(418, {"message": "teapot", "code": "T1"}).body["code"] == "T1"

    @pytest.mark.parametrize("status", [200, 302, 600])
    def test_status_range(self, status: int) -> None:
        with pytest.raises(ValueError, match="between 400 and 599"):
            error(status)

    def test_is_raisable(self) -> None:
        with pytest.raises(WrenError):
            raise error(400)


class TestRedirect:
    def test_builds(self) -> None:
        r = redirect(303, "/login")
        assert isinstance(r, Redirect)
        assert (r.status, r.location) == (303, "/login")

    def test_status_range(self) -> None:
        with pytest.raises(ValueError, match="Invalid redirect status"):
            redirect(200, "/")


class TestFail:
    def test_carries_data(self) -> None:
        failure = fail(422, {"reason": "invalid"})
        assert isinstance(failure, ActionFailure)
        assert failure.data == {"reason": "invalid"}
