import csv
import io
import itertools
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from api_handler import GeneratedImage, ImageGenerationError
from studio.services.artifacts import ArtifactSaveError, ArtifactStore, BatchDirectoryError
from studio.services.batch_images import (
    BatchImagePipeline,
    BatchPromptItem,
    BatchValidationError,
    parse_batch_request,
)
from studio.services.image_generation import RETRY_FAILED_SUFFIX, ImageSettings, generate_single_image
from studio.services.ledger import LEDGER_COLUMNS, render_ledger


def _policy_error(revised_prompt=None):
    inner = {"revised_prompt": revised_prompt} if revised_prompt else {}
    return ImageGenerationError(
        "API Error: 400 - content policy",
        status_code=400,
        body={"code": "content_policy_violation", "message": "blocked", "inner_error": inner},
    )


class DummyImageClient:
    """Scripted image client: ``outcomes`` maps a prompt to a list of results or errors."""

    def __init__(self, outcomes=None):
        self.outcomes = {key: list(value) for key, value in (outcomes or {}).items()}
        self.calls = []

    def generate(self, prompt, *, size, style, quality):
        self.calls.append({"prompt": prompt, "size": size, "style": style, "quality": quality})
        queued = self.outcomes.get(prompt)
        outcome = queued.pop(0) if queued else None
        if isinstance(outcome, Exception):
            raise outcome
        slug = prompt.replace(" ", "-")
        return GeneratedImage(url=f"https://images.example.test/{slug}.png")


def _fetch(url):
    return b"PNG:" + url.encode()


def _counter(start=1000):
    counter = itertools.count(start)
    return lambda: next(counter)


def _pipeline(client, tmp_path, **kwargs):
    store = ArtifactStore(tmp_path / "public", clock=lambda: 5000)
    kwargs.setdefault("fetch", _fetch)
    kwargs.setdefault("delay_seconds", 0)
    kwargs.setdefault("clock", _counter())
    return BatchImagePipeline(client, store, **kwargs), store


def _items(*prompts):
    return [BatchPromptItem(id=str(index), prompt=prompt) for index, prompt in enumerate(prompts, start=1)]


def _read_ledger(path):
    with path.open(newline="", encoding="utf-8") as handle:
        return list(csv.reader(handle))


def test_batch_generates_every_prompt(tmp_path):
    client = DummyImageClient()
    pipeline, store = _pipeline(client, tmp_path)

    summary = pipeline.run(_items("a red fox", "a blue bird"), ImageSettings())

    assert summary.batch_id == 5000
    assert summary.directory == tmp_path / "public" / "generated-images" / "batch-5000"
    assert [result.success for result in summary.results] == [True, True]
    first = summary.results[0]
    assert first.filename.startswith("image-1-") and first.filename.endswith(".png")
    assert first.image_url == f"/generated-images/batch-5000/{first.filename}"
    assert (summary.directory / first.filename).read_bytes() == b"PNG:https://images.example.test/a-red-fox.png"

    payload = summary.to_dict()
    assert payload["success"] is True
    assert payload["totalProcessed"] == 2
    assert payload["successCount"] == 2
    assert payload["errorCount"] == 0
    assert payload["batchId"] == 5000
    assert payload["batchFolder"] == "batch-5000"
    assert payload["csvFile"] == "/generated-images/batch-5000/batch-results-5000.csv"

    rows = _read_ledger(summary.csv_path)
    assert rows[0] == list(LEDGER_COLUMNS)
    assert len(rows) == 3
    assert rows[1][0] == "1"
    assert rows[1][3] == "true"
    assert rows[1][8] == "false"


def test_policy_rejection_is_retried_with_revised_prompt(tmp_path):
    client = DummyImageClient({"a violent scene": [_policy_error("a calm scene")]})
    pipeline, _ = _pipeline(client, tmp_path)

    summary = pipeline.run(_items("a violent scene"), ImageSettings())

    result = summary.results[0]
    assert [call["prompt"] for call in client.calls] == ["a violent scene", "a calm scene"]
    assert result.success is True
    assert result.was_revised is True
    assert result.original_prompt == "a violent scene"
    assert result.final_prompt == "a calm scene"
    assert "-revised-" in result.filename
    assert result.to_dict()["prompt"] == "a violent scene (REVISED: a calm scene)"

    row = _read_ledger(summary.csv_path)[1]
    assert row[1] == "a violent scene"
    assert row[2] == "a calm scene"
    assert row[8] == "true"


def test_failed_revision_retry_reports_original_error(tmp_path):
    client = DummyImageClient(
        {
            "bad prompt": [_policy_error("tamer prompt")],
            "tamer prompt": [ImageGenerationError("API Error: 400 - still blocked", status_code=400)],
        }
    )
    pipeline, _ = _pipeline(client, tmp_path)

    result = pipeline.run(_items("bad prompt"), ImageSettings()).results[0]

    assert len(client.calls) == 2
    assert result.success is False
    assert result.was_revised is False
    assert result.final_prompt == "bad prompt"
    assert result.error == "API Error: 400 - content policy" + RETRY_FAILED_SUFFIX


def test_other_errors_are_not_retried(tmp_path):
    client = DummyImageClient({"prompt": [ImageGenerationError("API Error: 500 - oops", status_code=500)]})
    pipeline, _ = _pipeline(client, tmp_path)

    summary = pipeline.run(_items("prompt"), ImageSettings())

    assert len(client.calls) == 1
    assert summary.results[0].error == "API Error: 500 - oops"
    assert summary.to_dict()["errorCount"] == 1
    assert "error" in summary.to_dict()["results"][0]
    assert "imageUrl" not in summary.to_dict()["results"][0]


def test_policy_rejection_without_revision_is_not_retried(tmp_path):
    client = DummyImageClient({"prompt": [_policy_error()]})
    pipeline, _ = _pipeline(client, tmp_path)

    result = pipeline.run(_items("prompt"), ImageSettings()).results[0]

    assert len(client.calls) == 1
    assert result.success is False


def test_save_failure_marks_item_failed(tmp_path):
    def broken_fetch(url):
        raise ArtifactSaveError("Download failed")

    client = DummyImageClient()
    pipeline, _ = _pipeline(client, tmp_path, fetch=broken_fetch)

    summary = pipeline.run(_items("one", "two"), ImageSettings())

    assert [result.success for result in summary.results] == [False, False]
    assert summary.results[0].error.startswith("Saving the image failed")
    assert summary.csv_path.exists()


def test_unexpected_exception_becomes_internal_error(tmp_path):
    client = DummyImageClient({"explodes": [KeyError("surprise")]})
    pipeline, _ = _pipeline(client, tmp_path)

    summary = pipeline.run(_items("explodes", "fine"), ImageSettings())

    assert summary.results[0].success is False
    assert summary.results[0].error.startswith("Internal error:")
    assert summary.results[1].success is True


def test_per_item_overrides_merge_with_defaults(tmp_path):
    client = DummyImageClient()
    pipeline, _ = _pipeline(client, tmp_path)
    items = [
        BatchPromptItem(id="1", prompt="wide", size="1792x1024"),
        BatchPromptItem(id="2", prompt="plain", style="", quality="  "),
    ]

    pipeline.run(items, ImageSettings(style="natural", quality="hd"))

    assert client.calls[0] == {"prompt": "wide", "size": "1792x1024", "style": "natural", "quality": "hd"}
    assert client.calls[1] == {"prompt": "plain", "size": "1024x1024", "style": "natural", "quality": "hd"}


def test_delay_only_between_items(tmp_path):
    sleeps = []
    client = DummyImageClient({"two": [ImageGenerationError("nope", status_code=400)]})
    pipeline, _ = _pipeline(client, tmp_path, delay_seconds=1.5, sleep=sleeps.append)

    pipeline.run(_items("one", "two", "three"), ImageSettings())

    assert sleeps == [1.5, 1.5]


def test_progress_callback_sees_each_result(tmp_path):
    seen = []
    client = DummyImageClient()
    pipeline, _ = _pipeline(client, tmp_path)

    pipeline.run(_items("one", "two"), ImageSettings(), on_progress=lambda r, pos, total: seen.append((r.id, pos, total)))

    assert seen == [("1", 1, 2), ("2", 2, 2)]


def test_directory_failure_aborts_before_any_request(tmp_path):
    blocker = tmp_path / "public"
    blocker.write_text("not a directory")
    client = DummyImageClient()
    pipeline = BatchImagePipeline(client, ArtifactStore(blocker), fetch=_fetch, delay_seconds=0)

    with pytest.raises(BatchDirectoryError):
        pipeline.run(_items("one"), ImageSettings())

    assert client.calls == []


def test_empty_batch_is_rejected(tmp_path):
    pipeline, _ = _pipeline(DummyImageClient(), tmp_path)

    with pytest.raises(BatchValidationError):
        pipeline.run([], ImageSettings())


def test_batch_id_collision_picks_next_id(tmp_path):
    store = ArtifactStore(tmp_path, clock=lambda: 42)

    first_id, first_dir = store.create_batch_directory()
    second_id, second_dir = store.create_batch_directory()

    assert first_id == 42
    assert second_id == 43
    assert first_dir != second_dir


def test_ledger_quotes_and_flattens_fields(tmp_path):
    client = DummyImageClient(
        {'say "hi", then\nleave': [ImageGenerationError("line one\nline two", status_code=400)]}
    )
    pipeline, _ = _pipeline(client, tmp_path)
    items = [
        BatchPromptItem(id="q", prompt='say "hi", then\nleave'),
        BatchPromptItem(id="ok", prompt="simple"),
    ]

    summary = pipeline.run(items, ImageSettings())

    content = summary.csv_path.read_text(encoding="utf-8")
    assert len(content.splitlines()) == 3
    rows = list(csv.reader(io.StringIO(content)))
    assert rows[1][1] == 'say "hi", then leave'
    assert rows[1][3] == "false"
    assert rows[1][6] == "line one line two"
    assert '"say ""hi"", then leave"' in content


def test_render_ledger_header_only_for_no_results():
    assert render_ledger([]) == ",".join(LEDGER_COLUMNS) + "\n"


def test_parse_batch_request_defaults_and_ids():
    items, defaults = parse_batch_request(
        {
            "prompts": ["first", {"prompt": " second ", "id": "custom", "size": "1024x1792"}],
            "globalSettings": {"style": "natural"},
        }
    )

    assert [item.id for item in items] == ["1", "custom"]
    assert items[1].prompt == "second"
    assert defaults == ImageSettings(style="natural")
    assert items[1].settings(defaults).size == "1024x1792"


@pytest.mark.parametrize(
    "payload",
    [None, {}, {"prompts": []}, {"prompts": "nope"}],
)
def test_parse_batch_request_rejects_bad_payloads(payload):
    with pytest.raises(BatchValidationError):
        parse_batch_request(payload)


def test_parse_batch_request_keeps_blank_entries():
    items, _ = parse_batch_request({"prompts": ["a cat", {"prompt": "  ", "id": "blank"}, 3]})

    assert [(item.id, item.prompt) for item in items] == [("1", "a cat"), ("blank", ""), ("3", "")]


def test_blank_prompt_fails_alone(tmp_path):
    client = DummyImageClient()
    pipeline, _ = _pipeline(client, tmp_path)
    items, defaults = parse_batch_request({"prompts": ["a red fox", {"id": "blank", "prompt": "   "}, "a blue bird"]})

    summary = pipeline.run(items, defaults)

    assert [call["prompt"] for call in client.calls] == ["a red fox", "a blue bird"]
    assert [result.success for result in summary.results] == [True, False, True]
    assert summary.results[1].error == "The prompt is empty."
    assert summary.results[1].filename is None
    rows = _read_ledger(summary.csv_path)
    assert len(rows) == 4
    assert rows[2][0] == "blank"
    assert rows[2][3] == "false"


def test_single_image_is_saved_locally(tmp_path):
    client = DummyImageClient()
    store = ArtifactStore(tmp_path)

    payload = generate_single_image(client, store, "a lighthouse", ImageSettings(), fetch=_fetch, clock=lambda: 77)

    assert payload["imageUrl"] == "/generated-images/generated-77.png"
    assert payload["originalUrl"] == "https://images.example.test/a-lighthouse.png"
    assert payload["timestamp"] == 77
    assert payload["size"] == "1024x1024"
    assert "wasRevised" not in payload
    assert (tmp_path / "generated-images" / "generated-77.png").exists()


def test_single_image_revision_is_reported(tmp_path):
    client = DummyImageClient({"edgy": [_policy_error("mild")]})

    payload = generate_single_image(
        client, ArtifactStore(tmp_path), "edgy", ImageSettings(), fetch=_fetch, clock=lambda: 9
    )

    assert payload["wasRevised"] is True
    assert payload["prompt"] == "edgy (REVISED: mild)"
    assert payload["revisedPrompt"] == "mild"
    assert payload["imageUrl"] == "/generated-images/generated-revised-9.png"


def test_single_image_falls_back_to_remote_url_when_save_fails(tmp_path):
    def broken_fetch(url):
        raise ArtifactSaveError("unreachable")

    payload = generate_single_image(
        DummyImageClient(), ArtifactStore(tmp_path), "sky", ImageSettings(), fetch=broken_fetch
    )

    assert payload["imageUrl"] == "https://images.example.test/sky.png"
    assert "saveError" in payload


def test_single_image_failure_raises_with_status(tmp_path):
    client = DummyImageClient({"sky": [ImageGenerationError("API Error: 429 - busy", status_code=429)]})

    with pytest.raises(ImageGenerationError) as excinfo:
        generate_single_image(client, ArtifactStore(tmp_path), "sky", ImageSettings(), fetch=_fetch)

    assert excinfo.value.status_code == 429
    assert str(excinfo.value) == "DALL-E API Error: 429 - busy"
