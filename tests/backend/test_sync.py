import asyncio
import json

from board_lib.storage.codec import decompress
from board_lib.storage.directory import PermissionState
from board_lib.storage.metadata_store import FOLDER_HANDLE_SETTING
from tests.fakes import FakeDirectoryHandle, FakePlatform

BOARDS = [{'id': 'a', 'title': 'Ideas'}, {'id': 'b', 'title': 'Plans'}]


def test_pick_copies_mirror_values_into_folder(make_manager, folder):
    m = make_manager(FakePlatform(picks=[folder]))

    async def scenario():
        await m.init()
        await (await m.save_item('wb_boards', BOARDS))
        await (await m.save_item('wb_folders', [{'id': 'f'}]))
        await (await m.save_item(m.content_key('a'), {'shapes': ['a']}))
        await (await m.save_item(m.content_key('b'), {'shapes': ['b']}))
        assert folder.files == {}
        return await m.pick_storage_folder()

    assert asyncio.run(scenario()) is True
    assert json.loads(folder.files['wb_boards.json']) == BOARDS
    assert json.loads(folder.files['wb_folders.json']) == [{'id': 'f'}]
    assert decompress(folder.files['content_a.tom']) == {'shapes': ['a']}
    assert decompress(folder.files['content_b.tom']) == {'shapes': ['b']}
    assert m.last_sync.ok
    assert 'wb_view_settings' in m.last_sync.skipped


def test_pick_copies_values_known_only_to_fallback(make_manager, metadata, folder):
    # written by an earlier session that had no folder
    metadata.save('wb_boards', BOARDS)
    metadata.save('content_a', {'shapes': ['from db']})
    metadata.save('wb_custom_covers', ['cover.png'])

    m = make_manager(FakePlatform(picks=[folder]))

    async def scenario():
        await m.init()
        return await m.pick_storage_folder()

    assert asyncio.run(scenario()) is True
    assert decompress(folder.files['content_a.tom']) == {'shapes': ['from db']}
    assert json.loads(folder.files['wb_custom_covers.json']) == ['cover.png']
    assert 'content_b.tom' not in folder.files
    assert 'content_b' in m.last_sync.skipped


def test_one_failing_key_does_not_stop_the_rest(make_manager, folder):
    folder.fail_names.add('content_a.tom')
    m = make_manager(FakePlatform(picks=[folder]))

    async def scenario():
        await m.init()
        await (await m.save_item('wb_boards', BOARDS))
        await (await m.save_item(m.content_key('a'), {'shapes': ['a']}))
        await (await m.save_item(m.content_key('b'), {'shapes': ['b']}))
        return await m.pick_storage_folder()

    assert asyncio.run(scenario()) is True
    report = m.last_sync
    assert report.failed == ['content_a']
    assert 'content_b' in report.synced
    assert 'wb_boards' in report.synced
    assert 'content_b.tom' in folder.files


def test_malformed_board_index_entries_are_skipped(make_manager, folder):
    m = make_manager(FakePlatform(picks=[folder]))

    async def scenario():
        await m.init()
        await (await m.save_item('wb_boards', [{'id': 'a'}, {'title': 'no id'}, 'junk', {'id': 'a'}]))
        await (await m.save_item(m.content_key('a'), {'shapes': []}))
        return await m.pick_storage_folder()

    assert asyncio.run(scenario()) is True
    assert m.last_sync.failed == []
    assert m.last_sync.synced.count('content_a') == 1


def test_sync_prefers_mirror_over_stale_folder(make_manager, metadata, folder):
    folder.files['wb_folders.json'] = b'["stale from last year"]'
    m = make_manager(FakePlatform(picks=[folder]))

    async def scenario():
        await m.init()
        await (await m.save_item('wb_folders', ['fresh']))
        await m.pick_storage_folder()
        return await m.get_item('wb_folders', None)

    assert asyncio.run(scenario()) == ['fresh']
    assert json.loads(folder.files['wb_folders.json']) == ['fresh']


def test_regranting_stored_folder_does_not_resync(make_manager, metadata):
    platform = FakePlatform()
    stored = platform.add(FakeDirectoryHandle('boards'))
    stored.permission = PermissionState.DENIED
    metadata.put_setting(FOLDER_HANDLE_SETTING, stored.to_token())
    m = make_manager(platform)

    async def scenario():
        await m.init()
        return await m.pick_storage_folder()

    assert asyncio.run(scenario()) is True
    assert m.last_sync is None
    assert m.has_directory
