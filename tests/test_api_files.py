"""Tests for the /api/files and /api/search routes."""

import pytest
from starlette.datastructures import UploadFile

from FileServer.files import content_disposition


def upload(client, headers, files, path=''):
    """POST multipart with one `path` field and one `file` part per (name, bytes)."""
    parts = [('file', (name, data, 'application/octet-stream')) for name, data in files]
    return client.post('/api/files/upload', headers=headers, data={'path': path}, files=parts)


class TestUploadAndList:
    """Upload then list."""

    def test_scenario_round_trip(self, client, auth_headers, root_dir):
        """upload -> list -> download -> rename -> delete."""
        r = upload(client, auth_headers, [('todo.txt', b'buy milk')], path='notes')
        assert r.status_code == 200, r.text
        body = r.json()
        assert body['failed'] == []
        assert body['created_directories'] == ['notes']
        desc = body['uploaded'][0]
        assert (desc['name'], desc['path'], desc['size'], desc['is_dir']) == ('todo.txt', 'notes/todo.txt', 8, False)

        r = client.get('/api/files/list', headers=auth_headers, params={'path': 'notes'})
        assert r.status_code == 200
        assert r.json()['path'] == 'notes'
        assert [f['path'] for f in r.json()['files']] == ['notes/todo.txt']

        r = client.get('/api/files/download/notes/todo.txt', headers=auth_headers)
        assert r.status_code == 200
        assert r.content == b'buy milk'
        assert r.headers['content-type'] == 'application/octet-stream'
        assert r.headers['content-disposition'] == 'attachment; filename="todo.txt"'
        assert r.headers['content-length'] == '8'

        r = client.put('/api/files/rename', headers=auth_headers, json={'from': 'notes/todo.txt', 'to': 'done.txt'})
        assert r.status_code == 200
        assert r.json()['path'] == 'notes/done.txt'

        r = client.delete('/api/files/notes', headers=auth_headers)
        assert r.status_code == 200
        assert r.json() == {'message': 'Deleted successfully', 'path': 'notes'}

        r = client.get('/api/files/list', headers=auth_headers, params={'path': 'notes'})
        assert r.status_code == 404
        assert r.json()['error'] == 'not_found'

    def test_folder_upload_keeps_structure(self, client, auth_headers, root_dir):
        files = [('album/2024/a.jpg', b'a'), ('album/b.jpg', b'b')]

        r = upload(client, auth_headers, files, path='pics')

        assert r.status_code == 200
        assert sorted(d['path'] for d in r.json()['uploaded']) == ['pics/album/2024/a.jpg', 'pics/album/b.jpg']
        assert r.json()['created_directories'] == ['pics', 'pics/album', 'pics/album/2024']
        assert (root_dir / 'pics' / 'album' / '2024' / 'a.jpg').read_bytes() == b'a'

    def test_partial_failure_reported_per_file(self, client, auth_headers, root_dir):
        (root_dir / 'exists.txt').write_text('old')

        r = upload(client, auth_headers, [('exists.txt', b'new'), ('fresh.txt', b'ok')])

        assert r.status_code == 200
        body = r.json()
        assert [d['name'] for d in body['uploaded']] == ['fresh.txt']
        assert body['failed'][0]['filename'] == 'exists.txt'
        assert body['failed'][0]['kind'] == 'file_exists'
        assert (root_dir / 'exists.txt').read_text() == 'old'

    def test_missing_file_parts(self, client, auth_headers):
        r = client.post('/api/files/upload', headers=auth_headers, data={'path': ''})

        assert r.status_code == 400
        assert r.json()['error'] == 'bad_request'

    def test_traversal_target_rejected(self, client, auth_headers, tmp_path):
        r = upload(client, auth_headers, [('x.txt', b'x')], path='../../outside')

        assert r.status_code == 400
        assert r.json()['error'] == 'invalid_path'
        assert not (tmp_path / 'outside').exists()

    def test_list_root_sorted(self, client, auth_headers, root_dir):
        (root_dir / 'b.txt').write_text('b')
        (root_dir / 'dir').mkdir()
        (root_dir / 'a.txt').write_text('a')

        r = client.get('/api/files/list', headers=auth_headers)

        assert [f['name'] for f in r.json()['files']] == ['dir', 'a.txt', 'b.txt']
        assert r.json()['path'] == ''


class TestErrorMapping:
    """Storage error kinds map to distinct statuses."""

    def test_invalid_path_400(self, client, auth_headers):
        r = client.get('/api/files/list', headers=auth_headers, params={'path': '../..'})
        assert r.status_code == 400
        assert r.json()['error'] == 'invalid_path'

    def test_download_directory_400(self, client, auth_headers, root_dir):
        (root_dir / 'd').mkdir()
        r = client.get('/api/files/download/d', headers=auth_headers)
        assert r.status_code == 400
        assert r.json()['error'] == 'bad_request'

    def test_download_missing_404(self, client, auth_headers):
        r = client.get('/api/files/download/none.txt', headers=auth_headers)
        assert r.status_code == 404

    def test_mkdir_existing_400(self, client, auth_headers, root_dir):
        (root_dir / 'd').mkdir()
        r = client.post('/api/files/mkdir', headers=auth_headers, json={'path': 'd'})
        assert r.status_code == 400
        assert 'already exists' in r.json()['message']

    def test_rename_conflict_409(self, client, auth_headers, root_dir):
        (root_dir / 'a.txt').write_text('a')
        (root_dir / 'b.txt').write_text('b')
        r = client.put('/api/files/rename', headers=auth_headers, json={'from': 'a.txt', 'to': 'b.txt'})
        assert r.status_code == 409
        assert r.json()['details']['path'] == 'b.txt'

    def test_rename_with_separator_400(self, client, auth_headers, root_dir):
        (root_dir / 'a.txt').write_text('a')
        r = client.put('/api/files/rename', headers=auth_headers, json={'from': 'a.txt', 'to': 'sub/a.txt'})
        assert r.status_code == 400


class TestLimits:
    """Extension and size policy through HTTP."""

    @pytest.fixture
    def settings(self, settings):
        return settings.coerce(**{**settings.__dict__, 'allowed_extensions': 'txt,jpg', 'max_upload_size': 10})

    def test_extension_rejected(self, client, auth_headers):
        r = upload(client, auth_headers, [('evil.exe', b'MZ')])

        assert r.status_code == 200
        assert r.json()['failed'][0]['kind'] == 'invalid_file_type'

    def test_size_rejected(self, client, auth_headers, root_dir):
        r = upload(client, auth_headers, [('big.txt', b'x' * 11)])

        assert r.json()['failed'][0]['kind'] == 'file_too_large'
        assert not (root_dir / 'big.txt').exists()

    def test_refused_parts_are_not_spooled(self, client, auth_headers, root_dir, monkeypatch):
        spooled = []

        async def counting_write(self, data):
            spooled.append(len(data))

        monkeypatch.setattr(UploadFile, 'write', counting_write)
        big = b'x' * (1024 * 1024)

        r = upload(client, auth_headers, [('big.exe', big), ('big.txt', big), ('ok.txt', b'fine')])

        assert r.status_code == 200
        body = r.json()
        assert [(f['filename'], f['kind']) for f in body['failed']] == [
            ('big.exe', 'invalid_file_type'),
            ('big.txt', 'file_too_large'),
        ]
        assert [d['name'] for d in body['uploaded']] == ['ok.txt']
        assert spooled == []
        assert sorted(p.name for p in root_dir.iterdir()) == ['ok.txt']

    def test_not_multipart_400(self, client, auth_headers):
        r = client.post('/api/files/upload', headers=auth_headers, json={'path': ''})

        assert r.status_code == 400
        assert r.json()['error'] == 'bad_request'


class TestOtherRoutes:
    """mkdir / move / download headers / search / health."""

    def test_mkdir_returns_descriptor(self, client, auth_headers, root_dir):
        r = client.post('/api/files/mkdir', headers=auth_headers, json={'path': 'a/b', 'recursive': True})

        assert r.status_code == 201
        assert r.json()['is_dir'] is True
        assert r.json()['mime_type'] is None
        assert (root_dir / 'a' / 'b').is_dir()

    def test_move(self, client, auth_headers, root_dir):
        (root_dir / 'a.txt').write_text('a')

        r = client.put('/api/files/move', headers=auth_headers, json={'from': 'a.txt', 'to': 'archive/a.txt'})

        assert r.status_code == 200
        assert r.json()['path'] == 'archive/a.txt'
        assert (root_dir / 'archive' / 'a.txt').exists()

    def test_non_ascii_download_name(self, client, auth_headers, root_dir):
        (root_dir / 'résumé.txt').write_bytes(b'cv')

        r = client.get('/api/files/download/r%C3%A9sum%C3%A9.txt', headers=auth_headers)

        assert r.status_code == 200
        assert r.headers['content-disposition'] == "attachment; filename*=UTF-8''r%C3%A9sum%C3%A9.txt"

    def test_control_characters_in_download_name(self, client, auth_headers, root_dir):
        (root_dir / 'bad\rname.txt').write_bytes(b'x')

        r = client.get('/api/files/download/bad%0Dname.txt', headers=auth_headers)

        assert r.status_code == 200
        assert r.headers['content-disposition'] == "attachment; filename*=UTF-8''bad%0Dname.txt"
        assert r.content == b'x'

    @pytest.mark.parametrize('name,expected', [
        ('plain.txt', 'attachment; filename="plain.txt"'),
        ('say "hi".txt', 'attachment; filename="say \\"hi\\".txt"'),
        ('line\nbreak.txt', "attachment; filename*=UTF-8''line%0Abreak.txt"),
        ('tab\there.txt', "attachment; filename*=UTF-8''tab%09here.txt"),
        ('del\x7f.txt', "attachment; filename*=UTF-8''del%7F.txt"),
    ])
    def test_content_disposition(self, name, expected):
        assert content_disposition(name) == expected
    def test_search(self, client, auth_headers, root_dir):
        (root_dir / 'docs').mkdir()
        (root_dir / 'docs' / 'report.pdf').write_text('x')

        r = client.get('/api/search', headers=auth_headers, params={'query': 'report'})

        assert r.status_code == 200
        body = r.json()
        assert body['query'] == 'report'
        assert body['results'][0]['path'] == 'docs/report.pdf'
        assert body['results'][0]['score'] == pytest.approx(0.9)

    def test_search_empty_query(self, client, auth_headers):
        r = client.get('/api/search', headers=auth_headers, params={'query': ''})
        assert r.status_code == 400

    def test_health_needs_no_auth(self, client):
        r = client.get('/api/health')
        assert r.status_code == 200
        assert r.json()['status'] == 'ok'
