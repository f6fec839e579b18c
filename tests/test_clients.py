"""Tests for the production collaborators, with their SDKs and HTTP sessions mocked."""
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest
import requests
from google.api_core import exceptions as gexc
from google.cloud import speech

from wingman.infrastructure.api import WingmanApiClient
from wingman.infrastructure.llm import EmptyResponseError, VertexRestClient
from wingman.infrastructure.speech import GoogleSpeechTranscriber
from wingman.infrastructure.storage import GcsObjectStorage
from wingman.interview.errors import CollaboratorError, ResultsNotReady, UploadError
from wingman.interview.models import MediaBlob
from wingman.interview.testing import PCM_MIME, WEBM_MIME


def http_response(status_code=200, body=None, text=""):
    resp = Mock()
    resp.status_code = status_code
    resp.json.return_value = body
    resp.content = b"{}" if body is not None else b""
    resp.text = text
    return resp


class TestWingmanApiClient:
    def make_client(self, response):
        session = Mock()
        session.request.return_value = response
        return WingmanApiClient("http://app.test/", api_key="secret", session=session), session

    def test_analyze_posts_uri(self):
        client, session = self.make_client(http_response(200, {"success": True}))
        client.analyze("gs://b/k.webm", "s1", 0)
        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert (method, url) == ("POST", "http://app.test/api/video-analysis")
        assert kwargs["json"] == {"videoUri": "gs://b/k.webm", "sessionId": "s1",
                                  "segmentIndex": 0, "analysisType": "comprehensive"}
        assert kwargs["headers"]["x-api-key"] == "secret"

    def test_analyze_error_raises(self):
        client, _ = self.make_client(http_response(503, text="unavailable"))
        with pytest.raises(CollaboratorError, match="503"):
            client.analyze("gs://b/k", "s1", 0)

    def test_list_results_not_found(self):
        client, _ = self.make_client(http_response(404, {"error": "No video analysis found for this session"}))
        with pytest.raises(ResultsNotReady):
            client.list_results("s1")

    @pytest.mark.parametrize("body,expected", [
        ([{"segmentIndex": 0}], [{"segmentIndex": 0}]),
        ({"results": [{"segmentIndex": 1}]}, [{"segmentIndex": 1}]),
        ({"speech_analysis": {}}, [{"speech_analysis": {}}]),
        ("odd", []),
    ])
    def test_list_results_shapes(self, body, expected):
        client, session = self.make_client(http_response(200, body))
        assert client.list_results("s1") == expected
        assert session.request.call_args.kwargs["params"] == {"sessionId": "s1"}

    def test_transport_error_becomes_collaborator_error(self):
        session = Mock()
        session.request.side_effect = requests.ConnectionError("refused")
        client = WingmanApiClient("http://app.test", session=session)
        with pytest.raises(CollaboratorError, match="refused"):
            client.list_results("s1")

    def test_feedback_and_status(self):
        client, session = self.make_client(http_response(200, {"success": True}))
        history = [{"role": "assistant", "content": "Hi"}]
        client.submit_feedback("s1", history, None)
        assert session.request.call_args.kwargs["json"] == {
            "sessionId": "s1", "conversationHistory": history, "videoAnalysis": None,
        }
        client.update_session_status("s1", "COMPLETED")
        method, url = session.request.call_args.args
        assert (method, url) == ("PATCH", "http://app.test/api/ai/session/s1")
        assert session.request.call_args.kwargs["json"] == {"status": "COMPLETED"}

    def test_analyze_frame_sends_data_url(self):
        client, session = self.make_client(http_response(200, {"success": True, "emotion": "joy"}))
        assert client.analyze_frame("s1", b"\xff\xd8jpeg") == {"success": True, "emotion": "joy"}
        method, url = session.request.call_args.args
        assert (method, url) == ("POST", "http://app.test/api/vision/analyze-frame")
        assert session.request.call_args.kwargs["json"] == {
            "image": "data:image/jpeg;base64,/9hqcGVn", "sessionId": "s1",
        }

    def test_save_frames(self):
        client, session = self.make_client(http_response(200, {"success": True}))
        frames = [{"timestamp": 1, "emotion": "joy"}]
        client.save_frames("s1", frames)
        method, url = session.request.call_args.args
        assert (method, url) == ("POST", "http://app.test/api/vision/save-frames")
        assert session.request.call_args.kwargs["json"] == {"sessionId": "s1", "frames": frames}

    def test_frame_errors_name_the_component(self):
        client, _ = self.make_client(http_response(500, text="boom"))
        with pytest.raises(CollaboratorError) as excinfo:
            client.save_frames("s1", [])
        assert excinfo.value.collaborator == "frame_analysis"

    def test_no_key_no_header(self):
        session = Mock()
        session.request.return_value = http_response(200, {})
        WingmanApiClient("http://app.test", session=session).update_session_status("s1", "FAILED")
        assert "x-api-key" not in session.request.call_args.kwargs["headers"]


class TestGcsObjectStorage:
    def test_upload_returns_gs_uri(self):
        client = Mock()
        storage = GcsObjectStorage("bucket", client=client)
        uri = storage.upload(MediaBlob(b"data", WEBM_MIME), "interviews/s1/x.webm")
        assert uri == "gs://bucket/interviews/s1/x.webm"
        client.bucket.assert_called_once_with("bucket")
        blob = client.bucket.return_value.blob.return_value
        blob.upload_from_string.assert_called_once_with(b"data", content_type="video/webm")

    def test_rejection_becomes_upload_error(self):
        client = Mock()
        client.bucket.return_value.blob.return_value.upload_from_string.side_effect = gexc.Forbidden("denied")
        storage = GcsObjectStorage("bucket", client=client)
        with pytest.raises(UploadError) as excinfo:
            storage.upload(MediaBlob(b"data", WEBM_MIME), "k")
        assert excinfo.value.status_code == 403

    def test_bucket_required(self):
        with pytest.raises(ValueError):
            GcsObjectStorage("")


def word(text, speaker, start, end):
    return SimpleNamespace(word=text, speaker_tag=speaker,
                           start_time=timedelta(seconds=start), end_time=timedelta(seconds=end))


def recognize_response(transcripts, words=()):
    results = [SimpleNamespace(alternatives=[SimpleNamespace(transcript=t, words=[])]) for t in transcripts]
    if words:
        results.append(SimpleNamespace(alternatives=[SimpleNamespace(transcript="", words=list(words))]))
    return SimpleNamespace(results=results)


class TestGoogleSpeechTranscriber:
    def test_webm_uses_opus(self):
        client = Mock()
        client.recognize.return_value = recognize_response(["Hello there. "])
        stt = GoogleSpeechTranscriber(enable_diarization=False, client=client)
        result = stt.transcribe(MediaBlob(b"webm", WEBM_MIME), "s1")
        assert result == {"transcript": "Hello there.", "speakerSegments": []}
        config = client.recognize.call_args.kwargs["config"]
        assert config.encoding == speech.RecognitionConfig.AudioEncoding.WEBM_OPUS
        assert config.sample_rate_hertz == 48000

    def test_diarized_segments(self):
        client = Mock()
        words = [word("I", 1, 0.0, 0.2), word("built", 1, 0.2, 0.5), word("nice", 2, 0.6, 0.9)]
        client.recognize.return_value = recognize_response(["I built", "nice"], words)
        stt = GoogleSpeechTranscriber(client=client)
        result = stt.transcribe(MediaBlob(b"\x00\x00" * 16000, PCM_MIME, 16000, 1), "s1")
        assert result["transcript"] == "I built nice"
        assert result["speakerSegments"] == [
            {"speaker": "1", "text": "I built", "startTime": 0.0, "endTime": 0.5},
            {"speaker": "2", "text": "nice", "startTime": 0.6, "endTime": 0.9},
        ]
        config = client.recognize.call_args.kwargs["config"]
        assert config.encoding == speech.RecognitionConfig.AudioEncoding.LINEAR16
        assert config.diarization_config.max_speaker_count == 2

    def test_long_pcm_uses_long_running(self):
        client = Mock()
        client.long_running_recognize.return_value.result.return_value = recognize_response(["long answer"])
        stt = GoogleSpeechTranscriber(enable_diarization=False, client=client)
        result = stt.transcribe(MediaBlob(b"\x00\x00" * 16000 * 60, PCM_MIME, 16000, 1), "s1")
        assert result["transcript"] == "long answer"
        client.recognize.assert_not_called()


class TestVertexRestClient:
    def make_client(self):
        client = VertexRestClient(project="p")
        client._token = "token"
        return client

    def test_returns_first_text_part(self):
        reply = http_response(200, {"candidates": [{"content": {"parts": [{"text": "Next question?"}]}}]})
        with patch("wingman.infrastructure.llm.client.requests.post", return_value=reply) as post:
            assert self.make_client().generate_content("prompt") == "Next question?"
        body = post.call_args.kwargs["json"]
        assert body["contents"][0]["parts"][0]["text"] == "prompt"
        assert len(body["safetySettings"]) == 4

    def test_empty_reply_raises(self):
        reply = http_response(200, {"candidates": [{"finishReason": "SAFETY"}]})
        with patch("wingman.infrastructure.llm.client.requests.post", return_value=reply):
            with pytest.raises(EmptyResponseError):
                self.make_client().generate_content("prompt")

    def test_refreshes_token_once_on_401(self):
        client = self.make_client()
        replies = [http_response(401), http_response(200, {"text": "ok"})]
        with patch("wingman.infrastructure.llm.client.requests.post", side_effect=replies), \
                patch.object(VertexRestClient, "_refresh_token") as refresh:
            assert client.generate_content("prompt") == "ok"
        refresh.assert_called_once()

    def test_http_error_raises(self):
        with patch("wingman.infrastructure.llm.client.requests.post", return_value=http_response(500, text="boom")):
            with pytest.raises(RuntimeError, match="500"):
                self.make_client().generate_content("prompt")
