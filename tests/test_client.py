"""Tests for orthanc_cli.client: request construction and error mapping."""

from unittest.mock import MagicMock

import pytest
import requests

from orthanc_cli.client import WADO_RS_ACCEPT, OrthancClient, client_from_context
from orthanc_cli.context_store import OrthancContext
from orthanc_cli.errors import ConfigError, OrthancRequestError


def _response(status=200, json_body=None, text="", reason="OK"):
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status
    resp.reason = reason
    if json_body is not None:
        resp.content = b"{}"
        resp.json.return_value = json_body
    else:
        resp.content = text.encode()
        resp.json.side_effect = ValueError("no json")
    resp.text = text
    return resp


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(session):
    return OrthancClient("http://orthanc:8042/", session=session)


def _call(session):
    args, kwargs = session.request.call_args
    return args[0], args[1], kwargs


class TestTransport:
    def test_url_and_timeout(self, client, session):
        session.request.return_value = _response(json_body=["a", "b"])
        assert client.list_resources("patients") == ["a", "b"]
        method, url, kwargs = _call(session)
        assert (method, url) == ("GET", "http://orthanc:8042/patients")
        assert kwargs["timeout"] == 30
        assert kwargs["params"] == {}

    def test_auth_and_insecure(self, session):
        OrthancClient("https://x", "user", "pw", insecure=True, session=session)
        assert session.auth == ("user", "pw")
        assert session.verify is False

    def test_http_error_uses_orthanc_message(self, client, session):
        session.request.return_value = _response(
            status=404, json_body={"Message": "Unknown resource", "Details": "abc"}
        )
        with pytest.raises(OrthancRequestError) as excinfo:
            client.get_resource("studies", "abc")
        assert excinfo.value.status_code == 404
        assert "Unknown resource - abc" in str(excinfo.value)

    def test_connection_error(self, client, session):
        session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(OrthancRequestError, match="refused"):
            client.system()


class TestEndpoints:
    def test_list_expanded_with_paging(self, client, session):
        session.request.return_value = _response(json_body=[])
        client.list_resources("studies", expand=True, limit=10, since=5)
        _, _, kwargs = _call(session)
        assert kwargs["params"] == {"limit": 10, "since": 5, "expand": ""}

    def test_anonymize_omits_unset_flags(self, client, session):
        session.request.return_value = _response(json_body={"ID": "new"})
        client.anonymize("studies", "s1", force=False, keep_source=None, permissive=True)
        method, url, kwargs = _call(session)
        assert (method, url) == ("POST", "http://orthanc:8042/studies/s1/anonymize")
        assert kwargs["json"] == {"Force": False, "Permissive": True}

    def test_list_children_reduced_to_ids(self, client, session):
        session.request.return_value = _response(json_body=[{"ID": "i1"}, {"ID": "i2"}])
        assert client.list_children("series", "s1", "instances") == ["i1", "i2"]

    def test_find_in_modality_fetches_answers(self, client, session):
        session.request.side_effect = [
            _response(json_body={"ID": "q1", "Path": "/queries/q1"}),
            _response(json_body=[{"PatientID": "p"}]),
        ]
        answers = client.find_in_modality("pacs", "Study", {"PatientID": "p"})
        assert answers == [{"PatientID": "p"}]
        first, second = session.request.call_args_list
        assert first.args[1].endswith("/modalities/pacs/query")
        assert first.kwargs["json"] == {"Level": "Study", "Query": {"PatientID": "p"}}
        assert second.args[1].endswith("/queries/q1/answers")

    def test_get_server_missing(self, client, session):
        session.request.return_value = _response(json_body={"other": {}})
        with pytest.raises(OrthancRequestError) as excinfo:
            client.get_server("ghost")
        assert excinfo.value.status_code == 404

    def test_log_level_is_plain_text(self, client, session):
        session.request.return_value = _response(text="verbose\n")
        assert client.get_log_level() == "verbose"

    def test_wado_rs_paths(self):
        assert OrthancClient.wado_rs_path("1") == "dicom-web/studies/1"
        assert OrthancClient.wado_rs_path("1", "2", "3", "1,2") == (
            "dicom-web/studies/1/series/2/instances/3/frames/1,2"
        )

    def test_wado_rs_retrieve_streams(self, client, session):
        session.request.return_value = _response()
        client.wado_rs_retrieve("1", "2")
        _, url, kwargs = _call(session)
        assert url.endswith("dicom-web/studies/1/series/2")
        assert kwargs["stream"] is True
        assert kwargs["headers"] == {"Accept": WADO_RS_ACCEPT}


class TestClientFromContext:
    def test_missing_url(self):
        with pytest.raises(ConfigError):
            client_from_context(OrthancContext("empty"))

    def test_builds_client(self):
        client = client_from_context(OrthancContext("c", url="http://h:8042/"))
        assert client.url == "http://h:8042"
