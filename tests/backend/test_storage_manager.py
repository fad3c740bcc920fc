import asyncio
import gzip
import io
import json

from board_lib.config import DEFAULT_META_KEYS, StorageConfig
from board_lib.main import create_manager
from board_lib.storage import BackendMode, LocalPlatform, PermissionState, QuotaExceeded
from board_lib.storage.codec import decompress
from board_lib.storage.keys import KeyKind, KeyRegistry
from board_lib.storage.metadata_store import FOLDER_HANDLE_SETTING, UNSYNCED_SETTING, MetadataStore
from board_lib.storage.manager import StorageManager
from tests.fakes import FakeDirectoryHandle, FakePlatform

DOC = {'shapes': [{'type': 'line', 'x': 0, 'y': 0}]}


def test_init_is_idempotent_and_detects_mode(make_manager):
    m = make_manager(FakePlatform(capable=True))
    asyncio.run(m.init())
    asyncio.run(m.init())
    assert m.mode is BackendMode.DIRECTORY_CAPABLE
    assert m.has_directory is False
    assert m.permission_state is PermissionState.UNCHECKED

    embedded = make_manager(FakePlatform(capable=False))
    asyncio.run(embedded.init())
    assert embedded.mode is BackendMode.EMBEDDED_ONLY


def test_embedded_only_mode_round_trips_through_fallback(make_manager, metadata):
    m = make_manager(FakePlatform(capable=False))

    async def scenario():
        assert await m.pick_storage_folder() is False
        await (await m.save_item('content_1', DOC))
        return await m.get_item('content_1', None)

    assert asyncio.run(scenario()) == DOC
    assert metadata.load('content_1') == DOC


def test_fallback_value_or_default_when_no_directory(make_manager, metadata):
    metadata.save('wb_folders', ['saved earlier'])
    m = make_manager()

    async def scenario():
        return (
            await m.get_item('wb_folders', []),
            await m.get_item('wb_expanded_folders', ['default']),
        )

    assert asyncio.run(scenario()) == (['saved earlier'], ['default'])


def test_token_survives_restart(metadata, registry):
    platform = FakePlatform()
    folder = FakeDirectoryHandle('boards')
    platform.picks.append(folder)

    first = StorageManager(platform, metadata, registry)

    async def session_one():
        await first.init()
        assert await first.pick_storage_folder() is True
        await (await first.save_item(first.content_key(42), DOC))

    asyncio.run(session_one())
    assert metadata.get_setting(FOLDER_HANDLE_SETTING) == folder.to_token()

    # the fallback copy is dropped to prove the second session reads the folder
    metadata.delete('content_42')
    second = StorageManager(platform, metadata, registry)

    async def session_two():
        await second.init()
        return await second.get_item(second.content_key(42), None)

    assert asyncio.run(session_two()) == DOC
    assert second.has_directory is True
    assert second.permission_state is PermissionState.GRANTED


def test_stored_folder_needs_click_after_restart(make_manager, metadata):
    platform = FakePlatform()
    stored = platform.add(FakeDirectoryHandle('boards'))
    stored.permission = PermissionState.DENIED
    metadata.put_setting(FOLDER_HANDLE_SETTING, stored.to_token())
    changes = []
    m = make_manager(platform)
    m.on_storage_change = lambda: changes.append(m.has_directory)

    async def scenario():
        await m.init()
        assert m.needs_permission is True
        assert await m.get_item('wb_folders', 'dflt') == 'dflt'
        assert stored.requests == 0
        return await m.request_stored_permission()

    assert asyncio.run(scenario()) is True
    assert changes == [True]
    assert m.needs_permission is False


def test_request_stored_permission_without_token(make_manager):
    m = make_manager()
    assert asyncio.run(m.request_stored_permission()) is False


def test_on_storage_change_after_pick(make_manager, folder):
    changes = []
    m = make_manager(FakePlatform(picks=[folder]))
    m.on_storage_change = lambda: changes.append('picked')
    assert m.on_storage_change is not None

    assert asyncio.run(m.pick_storage_folder()) is True
    assert changes == ['picked']


def test_quota_warning_reaches_ui_callback(tmp_path, registry, folder):
    metadata = MetadataStore(tmp_path / 'tiny.sqlite3', max_bytes=16 * 1024)
    m = StorageManager(FakePlatform(capable=False), metadata, registry)
    warnings = []
    m.on_storage_warning = lambda key, exc: warnings.append((key, exc))

    async def scenario():
        outcome = await (await m.save_item('content_big', {'blob': 'x' * (256 * 1024)}))
        await m.close()
        return outcome

    outcome = asyncio.run(scenario())
    assert outcome.persisted is False
    assert len(warnings) == 1
    assert warnings[0][0] == 'content_big'
    assert isinstance(warnings[0][1], QuotaExceeded)
    # the mirror still serves the value for this session
    assert m.peek_item('content_big') == {'blob': 'x' * (256 * 1024)}


def test_portable_blobs_through_manager(make_manager):
    m = make_manager()
    blob = m.create_portable_blob(DOC)
    assert m.read_portable_blob(blob) == DOC
    assert m.read_portable_blob(io.BytesIO(blob)) == DOC


def test_local_folder_end_to_end(tmp_path):
    folder = tmp_path / 'boards'
    config = StorageConfig(metadata_db_path=str(tmp_path / 'meta.sqlite3'), content_prefix='content_')
    m = create_manager(config, picker=lambda: folder, config_path=tmp_path / 'absent.yml')

    async def scenario():
        await m.init()
        assert await m.pick_storage_folder() is True
        key = m.content_key(42)

        await (await m.save_item(key, DOC))
        assert json.loads(gzip.decompress((folder / 'content_42.tom').read_bytes())) == DOC
        assert await m.get_item(key, None) == DOC

        # only a legacy plain file left behind
        (folder / 'content_42.tom').unlink()
        (folder / 'content_42.json').write_text(json.dumps(DOC), encoding='utf-8')
        assert await m.get_item(key, None) == DOC
        await m.flush()
        assert decompress((folder / 'content_42.tom').read_bytes()) == DOC

        await m.remove_item(key)
        await m.remove_item(key)
        value = await m.get_item(key, 'gone')
        await m.close()
        return value

    assert asyncio.run(scenario()) == 'gone'
    assert sorted(p.name for p in folder.iterdir()) == []


def test_local_folder_deleted_mid_session(tmp_path):
    import shutil

    folder = tmp_path / 'boards'
    config = StorageConfig(metadata_db_path=str(tmp_path / 'meta.sqlite3'))
    m = create_manager(config, platform=LocalPlatform(lambda: folder), config_path=tmp_path / 'absent.yml')

    async def scenario():
        await m.init()
        await m.pick_storage_folder()
        await (await m.save_item('wb_folders', ['before']))
        shutil.rmtree(folder)

        outcome = await (await m.save_item('wb_folders', ['after']))
        assert outcome.directory is False and outcome.fallback is True
        value = await m.get_item('wb_folders', None)

        # a click recreates the folder and brings the directory tier back
        assert await m.request_stored_permission() is True
        await (await m.save_item('wb_folders', ['restored']))
        await m.close()
        return value

    assert asyncio.run(scenario()) == ['after']
    assert json.loads((folder / 'wb_folders.json').read_text(encoding='utf-8')) == ['restored']


def test_content_key_saved_by_string_after_restart_stays_compressed(metadata, registry):
    platform = FakePlatform()
    folder = FakeDirectoryHandle('boards')
    platform.picks.append(folder)
    first = StorageManager(platform, metadata, registry)

    async def session_one():
        assert await first.pick_storage_folder() is True
        await (await first.save_item(first.content_key(7), {'rev': 'A'}))

    asyncio.run(session_one())

    fresh = KeyRegistry(content_prefix='content_', meta_keys=DEFAULT_META_KEYS)
    second = StorageManager(platform, metadata, fresh)

    async def session_two():
        await second.init()
        await (await second.save_item('content_7', {'rev': 'B'}))
        return await second.get_item(second.content_key(7), None)

    assert asyncio.run(session_two()) == {'rev': 'B'}
    assert second.peek_item('content_7') == {'rev': 'B'}
    assert sorted(folder.files) == ['content_7.tom']
    assert decompress(folder.files['content_7.tom']) == {'rev': 'B'}


def test_init_registers_content_keys_from_board_index(metadata):
    metadata.save('wb_boards', [{'id': 'x'}, {'id': 'y'}])
    registry = KeyRegistry(content_prefix='board_', meta_keys=DEFAULT_META_KEYS)
    m = StorageManager(FakePlatform(), metadata, registry)

    asyncio.run(m.init())
    assert registry.keys(KeyKind.CONTENT) == ['board_x', 'board_y']


def test_edits_made_while_revoked_reach_folder_after_regrant(make_manager, folder):
    m = make_manager(FakePlatform(picks=[folder]))

    async def scenario():
        assert await m.pick_storage_folder() is True
        await (await m.save_item('wb_folders', ['A']))

        folder.permission = PermissionState.DENIED
        await (await m.save_item('wb_folders', ['B']))
        assert json.loads(folder.files['wb_folders.json']) == ['A']

        assert await m.request_stored_permission() is True
        return await m.get_item('wb_folders', None)

    assert asyncio.run(scenario()) == ['B']
    assert json.loads(folder.files['wb_folders.json']) == ['B']
    assert m.last_catch_up.synced == ['wb_folders']
    assert m.store.unsynced() == {}


def test_stale_folder_is_not_read_when_access_returns_silently(make_manager, folder):
    m = make_manager(FakePlatform(picks=[folder]))
    key = m.content_key(5)

    async def scenario():
        await m.pick_storage_folder()
        await (await m.save_item(key, {'rev': 1}))
        folder.permission = PermissionState.DENIED
        await (await m.save_item(key, {'rev': 2}))
        # permission comes back without a click, nothing has replayed yet
        folder.permission = PermissionState.GRANTED
        return await m.get_item(key, None)

    assert asyncio.run(scenario()) == {'rev': 2}
    assert m.peek_item(key) == {'rev': 2}


def test_unsynced_keys_are_replayed_in_the_next_session(metadata, registry):
    platform = FakePlatform()
    folder = FakeDirectoryHandle('boards')
    platform.picks.append(folder)
    first = StorageManager(platform, metadata, registry)

    async def session_one():
        await first.pick_storage_folder()
        await (await first.save_item('wb_view_settings', {'zoom': 1}))
        folder.permission = PermissionState.DENIED
        await (await first.save_item('wb_view_settings', {'zoom': 2}))

    asyncio.run(session_one())
    assert metadata.get_setting(UNSYNCED_SETTING) == {'wb_view_settings': 'meta'}

    folder.permission = PermissionState.GRANTED
    second = StorageManager(platform, metadata, registry)
    asyncio.run(second.init())

    assert json.loads(folder.files['wb_view_settings.json']) == {'zoom': 2}
    assert metadata.get_setting(UNSYNCED_SETTING) == {}


def test_remove_while_revoked_is_applied_to_folder_after_regrant(make_manager, folder):
    m = make_manager(FakePlatform(picks=[folder]))
    key = m.content_key(8)

    async def scenario():
        await m.pick_storage_folder()
        await (await m.save_item(key, DOC))
        folder.permission = PermissionState.DENIED
        await m.remove_item(key)
        folder.permission = PermissionState.GRANTED
        # the old file is still there but is not served
        assert 'content_8.tom' in folder.files
        assert await m.get_item(key, 'gone') == 'gone'

        folder.permission = PermissionState.DENIED
        assert await m.request_stored_permission() is True

    asyncio.run(scenario())
    assert folder.files == {}
    assert m.last_catch_up.skipped == ['content_8']
