import json

import pytest
from typer.testing import CliRunner

from medfund.cli import __main__ as cli
from medfund.storage.pointer import PointerFile
from tests.conftest import make_client

runner = CliRunner()


@pytest.fixture
def pointer_path(tmp_path):
    return tmp_path / "latest-db-cid.json"


@pytest.fixture
def invoke(fake_pinata, pointer_path, monkeypatch):
    def _invoke(*args, jwt="test-jwt"):
        monkeypatch.setattr(cli, "new_pinata_client", lambda: make_client(fake_pinata, jwt=jwt))
        return runner.invoke(cli.app, ["--pointer-file", str(pointer_path), *args])

    return _invoke


def current_cid(pointer_path):
    return PointerFile(pointer_path).current_cid()


def test_init_prints_cid(invoke, fake_pinata, pointer_path):
    result = invoke("init")

    assert result.exit_code == 0, result.output
    assert "New empty database created!" in result.output
    cid = fake_pinata.pins_of_type("database")[0]["cid"]
    assert f"Database CID: {cid}" in result.output
    assert current_cid(pointer_path) is None


def test_init_with_update_pointer(invoke, fake_pinata, pointer_path):
    result = invoke("init", "--update-pointer")

    assert result.exit_code == 0, result.output
    assert current_cid(pointer_path) == fake_pinata.pins_of_type("database")[0]["cid"]


def test_add_campaign_advances_pointer(invoke, fake_pinata, pointer_path, tmp_path):
    invoke("init", "--update-pointer")
    image = tmp_path / "photo.jpg"
    image.write_bytes(b"\xff\xd8\xff fake jpeg")

    result = invoke(
        "add-campaign",
        "latest",
        "--title", "Heart Surgery",
        "--story", "Emergency valve replacement.",
        "--goal", "50000",
        "--status", "active",
        "--image", str(image),
        "--update-pointer",
    )

    assert result.exit_code == 0, result.output
    assert "Campaign added with ID:" in result.output
    assert "NEW Database CID:" in result.output
    database = fake_pinata.json_at(current_cid(pointer_path))
    campaign = database["campaigns"][0]
    assert campaign["title"] == "Heart Surgery"
    assert campaign["status"] == "active"
    assert campaign["raisedAmount"] == 0
    assert campaign["campaignImageCID"] in fake_pinata.blobs
    assert "campaignImage.jpeg" in [p["filename"] for p in fake_pinata.pins]


def test_latest_without_pointer_fails(invoke):
    result = invoke("list-campaigns", "latest")
    assert result.exit_code == 1
    assert "no database CID recorded" in result.output


def test_writes_require_a_token(invoke, fake_pinata):
    cid = fake_pinata.put_json({"campaigns": [], "testimonials": [], "rewards": []})

    result = invoke("add-campaign", cid, "-t", "T", "-s", "S", "-g", "1", jwt="")

    assert result.exit_code == 1
    assert "PINATA_JWT" in result.output
    assert fake_pinata.requests == []


def test_reads_work_without_a_token(invoke, fake_pinata):
    cid = fake_pinata.put_json(
        {
            "campaigns": [{"id": "c1", "title": "T", "story": "S", "goalAmount": 10}],
            "testimonials": [],
            "rewards": [],
        }
    )

    listed = invoke("list-campaigns", cid, jwt="")
    fetched = invoke("get-campaign", cid, "c1", jwt="")

    assert listed.exit_code == 0, listed.output
    assert '"id": "c1"' in listed.output
    assert fetched.exit_code == 0, fetched.output
    assert json.loads(fetched.output)["title"] == "T"


def test_list_empty_database(invoke, fake_pinata):
    cid = fake_pinata.put_json({"campaigns": [], "testimonials": [], "rewards": []})
    result = invoke("list-campaigns", cid)
    assert result.exit_code == 0
    assert "No campaigns found in this database." in result.output


def test_get_unknown_campaign_fails(invoke, fake_pinata):
    cid = fake_pinata.put_json({"campaigns": [], "testimonials": [], "rewards": []})
    result = invoke("get-campaign", cid, "nope")
    assert result.exit_code == 1
    assert "Campaign with ID nope not found" in result.output


def test_update_funding(invoke, fake_pinata, pointer_path):
    cid = fake_pinata.put_json(
        {
            "campaigns": [{"id": "c1", "title": "T", "story": "S", "goalAmount": 1000, "raisedAmount": 100}],
            "testimonials": [],
            "rewards": [],
        }
    )
    PointerFile(pointer_path).write(cid)

    result = invoke("update-funding", "latest", "c1", "-r", "250", "--donators", "2", "--donations", "3", "--update-pointer")

    assert result.exit_code == 0, result.output
    campaign = fake_pinata.json_at(current_cid(pointer_path))["campaigns"][0]
    assert (campaign["raisedAmount"], campaign["donatorCount"], campaign["donationCount"]) == (250, 2, 3)


def test_update_funding_refuses_to_decrease(invoke, fake_pinata):
    cid = fake_pinata.put_json(
        {
            "campaigns": [{"id": "c1", "title": "T", "story": "S", "goalAmount": 1000, "raisedAmount": 100}],
            "testimonials": [],
            "rewards": [],
        }
    )

    result = invoke("update-funding", cid, "c1", "-r", "50", "--donators", "0", "--donations", "0")

    assert result.exit_code == 1
    assert "raisedAmount cannot decrease" in result.output


def test_stale_pointer_update_is_refused(invoke, fake_pinata, pointer_path):
    invoke("init", "--update-pointer")
    original = current_cid(pointer_path)
    PointerFile(pointer_path).write("bafysomeoneelse")

    result = invoke("add-campaign", original, "-t", "T", "-s", "S", "-g", "1", "--update-pointer")

    assert result.exit_code == 1
    assert "Pointer moved" in result.output
    assert current_cid(pointer_path) == "bafysomeoneelse"


def test_add_testimonial_with_author_image(invoke, fake_pinata, pointer_path, tmp_path):
    invoke("init", "--update-pointer")
    portrait = tmp_path / "jane.png"
    portrait.write_bytes(b"\x89PNG fake")

    result = invoke(
        "add-testimonial",
        "latest",
        "--author", "Jane Doe",
        "--text", "The surgery went well.",
        "--rating", "5",
        "--author-image", str(portrait),
        "--update-pointer",
    )

    assert result.exit_code == 0, result.output
    testimonial = fake_pinata.json_at(current_cid(pointer_path))["testimonials"][0]
    assert testimonial["authorName"] == "Jane Doe"
    assert testimonial["rating"] == 5
    assert testimonial["status"] == "pending"
    assert "author_Jane_Doe.png" in [p["filename"] for p in fake_pinata.pins]


def test_invalid_rating_is_rejected(invoke, fake_pinata):
    cid = fake_pinata.put_json({"campaigns": [], "testimonials": [], "rewards": []})
    result = invoke("add-testimonial", cid, "--author", "A", "--text", "B", "--rating", "9")
    assert result.exit_code == 1
    assert fake_pinata.requests == []


def test_add_reward(invoke, fake_pinata, pointer_path):
    invoke("init", "--update-pointer")

    result = invoke(
        "add-reward",
        "latest",
        "--title", "Supporter Badge",
        "-d", "An NFT badge",
        "--threshold", "100",
        "--supply", "50",
        "--type", "nft",
        "--update-pointer",
    )

    assert result.exit_code == 0, result.output
    reward = fake_pinata.json_at(current_cid(pointer_path))["rewards"][0]
    assert reward["type"] == "nft"
    assert reward["totalSupply"] == 50


def test_missing_image_file_fails(invoke, fake_pinata, tmp_path):
    cid = fake_pinata.put_json({"campaigns": [], "testimonials": [], "rewards": []})
    result = invoke("add-campaign", cid, "-t", "T", "-s", "S", "-g", "1", "--image", str(tmp_path / "missing.png"))
    assert result.exit_code == 1
    assert "File not found" in result.output


def test_corrupt_pointer_fails_cleanly(invoke, pointer_path):
    pointer_path.write_text("not json")

    result = invoke("list-campaigns", "latest")

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "could not read" in result.output


def test_unwritable_pointer_fails_cleanly(fake_pinata, tmp_path, monkeypatch):
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("")
    cid = fake_pinata.put_json({"campaigns": [], "testimonials": [], "rewards": []})
    monkeypatch.setattr(cli, "new_pinata_client", lambda: make_client(fake_pinata))

    result = runner.invoke(
        cli.app,
        ["--pointer-file", str(blocker / "latest-db-cid.json"), "add-campaign", cid, "-t", "T", "-s", "S", "-g", "1", "--update-pointer"],
    )

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "could not update" in result.output
    assert "NEW Database CID:" in result.output


def test_unpin_superseded_snapshot(invoke, fake_pinata, pointer_path):
    invoke("init", "--update-pointer")
    first = current_cid(pointer_path)
    invoke("add-campaign", "latest", "-t", "T", "-s", "S", "-g", "1", "--update-pointer")

    result = invoke("unpin", first)

    assert result.exit_code == 0, result.output
    assert f"Unpinned {first}" in result.output
    assert fake_pinata.unpinned == [first]


def test_unpin_refuses_current_database(invoke, fake_pinata, pointer_path):
    invoke("init", "--update-pointer")
    current = current_cid(pointer_path)

    result = invoke("unpin", current)

    assert result.exit_code == 1
    assert "refusing to unpin" in result.output
    assert fake_pinata.unpinned == []


def test_unpin_unknown_cid_fails(invoke):
    result = invoke("unpin", "bafynotpinned")
    assert result.exit_code == 1
    assert "404" in result.output
