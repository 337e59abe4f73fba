import json

import pytest
import requests

from common import Client, InvalidResponse, Item

from conftest import DummyResponse


def test_login_sets_auth_headers(config_file):
    c = Client(config_file)
    c.login()

    assert c.session.headers["Authorization"] == "MediaBrowser Token=secret"
    assert c.session.headers["X-Emby-Token"] == "secret"
    assert c.user_id == "u1"


def test_login_resolves_user_by_name(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text('[jellyfin]\nurl = "http://jf"\napi_key = "k"\nuser = "bob"\n')
    c = Client(path)
    c.session.get = lambda *args, **kwargs: DummyResponse(
        json_data=[{"Id": "a1", "Name": "alice"}, {"Id": "b1", "Name": "bob"}]
    )

    c.login()

    assert c.user_id == "b1"


def test_user_path_requires_user(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text('[jellyfin]\nurl = "http://jf"\napi_key = "k"\n')
    c = Client(path)
    c.login()

    with pytest.raises(ValueError):
        c.libraries


def test_find_library_by_name_or_id(client):
    client.session.get.return_value = DummyResponse(
        json_data={"Items": [{"Id": "l1", "Name": "Movies"}, {"Id": "l2", "Name": "Shows"}]}
    )

    assert client.find_library("Shows").id == "l2"
    assert client.find_library("l1").name == "Movies"
    with pytest.raises(ValueError):
        client.find_library("Music")
    client.session.get.assert_called_once()
    assert client.session.get.call_args.args[0] == "http://jellyfin.local:8096/Users/u1/Views"


def test_items_page_params(client):
    client.session.get.return_value = DummyResponse(
        json_data={"Items": [{"Id": "i1"}], "TotalRecordCount": 7}
    )

    rows, total = client.items_page("lib", 40, 20, include_types=("Series", "Episode"))

    assert rows == [{"Id": "i1"}]
    assert total == 7
    params = client.session.get.call_args.kwargs["params"]
    assert params["ParentId"] == "lib"
    assert params["StartIndex"] == 40
    assert params["Limit"] == 20
    assert params["Recursive"] == "true"
    assert params["Fields"] == "Tags,Name"
    assert params["IncludeItemTypes"] == "Series,Episode"


def test_iter_items_pages_by_configured_size(client):
    client.session.get.side_effect = [
        DummyResponse(json_data={"Items": [{"Id": "1"}, {"Id": "2"}], "TotalRecordCount": 3}),
        DummyResponse(json_data={"Items": [{"Id": "3", "Tags": ["a"]}], "TotalRecordCount": 3}),
    ]

    items = list(client.iter_items("lib"))

    assert [item.id for item, _total in items] == ["1", "2", "3"]
    assert items[2] == (Item(id="3", name="(no name)", type="", tags=frozenset({"a"})), 3)
    assert client.session.get.call_count == 2


def test_listing_error_propagates(client):
    client.session.get.return_value = DummyResponse(status_code=401)

    with pytest.raises(requests.HTTPError):
        list(client.iter_items("lib"))


def test_update_item_posts_json(client):
    client.session.post.return_value = DummyResponse()

    client.update_item("i1", {"Id": "i1", "Tags": ["a"]})

    args, kwargs = client.session.post.call_args
    assert args[0] == "http://jellyfin.local:8096/Items/i1"
    assert json.loads(kwargs["data"]) == {"Id": "i1", "Tags": ["a"]}


def test_update_policy_raises_on_error(client):
    client.session.post.return_value = DummyResponse(status_code=500)

    with pytest.raises(requests.HTTPError):
        client.update_policy("u2", {})
    assert client.session.post.call_args.args[0].endswith("/Users/u2/Policy")


def test_virtual_folders(client):
    client.session.get.return_value = DummyResponse(
        json_data=[{"ItemId": "f1", "Name": "Movies", "CollectionType": "movies"}]
    )

    assert client.find_folder("Movies").id == "f1"


def test_user_without_policy_document(client):
    client.session.get.return_value = DummyResponse(json_data={"Id": "u2", "Name": "bob"})

    assert client.user("u2").policy is None


def test_malformed_row_raises_invalid_response(client):
    client.session.get.return_value = DummyResponse(json_data={"Items": [{"Name": "x"}]})

    with pytest.raises(InvalidResponse):
        list(client.iter_items("lib"))


def test_bad_log_level_rejected(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text('[jellyfin]\nurl = "http://jf"\napi_key = "k"\n[logging]\nlevel = "LOUD"\n')

    with pytest.raises(ValueError):
        Client(path)
