"""
Tests for the JSON API.
"""

import base64
import io

import cv2
import numpy as np
import pytest

from colorhighlight import create_app
from colorhighlight.core import HSVColor, ToleranceWindow
from colorhighlight.core.worker import AnalyzeRequest


def png_bytes(pixels: np.ndarray) -> bytes:
    ok, buffer = cv2.imencode('.png', cv2.cvtColor(pixels, cv2.COLOR_RGBA2BGRA))
    assert ok
    return buffer.tobytes()


def decode_png(data: str) -> np.ndarray:
    return cv2.imdecode(np.frombuffer(base64.b64decode(data), np.uint8), cv2.IMREAD_UNCHANGED)


@pytest.fixture
def app():
    app = create_app({'TESTING': True, 'HIGHLIGHT_TIMEOUT': 30.0})
    yield app
    app.extensions['colorhighlight'].controller.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def texture_png(make_quadrants):
    return png_bytes(make_quadrants(64).pixels)


@pytest.fixture
def uploaded(client, texture_png):
    response = client.post('/api/texture', json={'image': base64.b64encode(texture_png).decode()})
    assert response.status_code == 200
    return response.get_json()


class TestService:
    """Tests for health and configuration endpoints."""

    def test_index(self, client):
        assert client.get('/').get_json()['api'] == '/api'

    def test_health(self, client):
        data = client.get('/api/health').get_json()
        assert data['status'] == 'healthy'
        assert data['worker'] is True

    def test_config_roundtrip(self, client):
        data = client.get('/api/config').get_json()
        assert data['color'] == '#ff6b6b'
        assert data['opacity'] == 0.8

        response = client.post('/api/config', json={'color': '#00ff00', 'tolerance': {'h': 5}})
        assert response.status_code == 200
        config = response.get_json()['config']
        assert config['color'] == '#00ff00'
        assert config['tolerance']['h'] == 5.0
        assert config['opacity'] == 0.8

        reset = client.post('/api/config/reset').get_json()['config']
        assert reset['color'] == '#ff6b6b'

    def test_invalid_config(self, client):
        response = client.post('/api/config', json={'opacity': 2})
        assert response.status_code == 400
        assert client.get('/api/config').get_json()['opacity'] == 0.8

    def test_config_requires_json(self, client):
        assert client.post('/api/config').status_code == 400

    def test_options(self, client):
        assert client.get('/api/options').get_json()['clahe_enabled'] is False

        response = client.post('/api/options', json={'clahe_enabled': True, 'unknown': 1})
        assert response.get_json()['options']['clahe_enabled'] is True

        reset = client.post('/api/options/reset').get_json()['options']
        assert reset['clahe_enabled'] is False

    def test_invalid_options(self, client):
        response = client.post('/api/options', json={'opening_kernel_size': '3'})
        assert response.status_code == 400
        assert client.get('/api/options').get_json()['opening_kernel_size'] == 3


class TestTexture:
    """Tests for texture upload and palette."""

    def test_upload_json(self, uploaded):
        assert uploaded['info'] == {'width': 64, 'height': 64, 'square': True}
        colors = {entry['hex'] for entry in uploaded['palette']}
        assert colors == {'#ff0000', '#00ff00', '#0000ff', '#ffff00'}

    def test_upload_multipart(self, client, texture_png):
        response = client.post(
            '/api/texture',
            data={'file': (io.BytesIO(texture_png), 'texture.png')},
            content_type='multipart/form-data',
        )
        assert response.status_code == 200
        assert len(response.get_json()['palette']) == 4

    def test_upload_rejects_extension(self, client, texture_png):
        response = client.post(
            '/api/texture',
            data={'file': (io.BytesIO(texture_png), 'texture.gif')},
            content_type='multipart/form-data',
        )
        assert response.status_code == 400

    def test_invalid_image(self, client):
        response = client.post('/api/texture', json={'image': base64.b64encode(b'garbage').decode()})
        assert response.status_code == 400
        assert 'error' in response.get_json()

    def test_no_image(self, client):
        assert client.post('/api/texture', json={}).status_code == 400

    def test_palette(self, client, uploaded):
        assert client.get('/api/palette').get_json()['palette'] == uploaded['palette']

    def test_palette_without_texture(self, client):
        assert client.get('/api/palette').status_code == 400


class TestHighlight:
    """Tests for highlighting through the API."""

    def test_highlight_red(self, client, uploaded):
        response = client.post('/api/highlight', json={'target': {'h': 0, 's': 100, 'v': 100}})
        assert response.status_code == 200

        data = response.get_json()
        assert data['stats']['matching_pixels'] == 32 * 32
        assert data['stats']['coverage'] == pytest.approx(0.25)
        assert data['stats']['bounding_box'] == {'min': [0.0, 0.0], 'max': [0.5, 0.5]}

        mask = decode_png(data['images']['mask'])
        assert mask.shape == (64, 64)
        assert mask[0, 0] == 255 and mask[63, 63] == 0

        preview = decode_png(data['images']['preview'])
        assert preview.shape == (64, 64, 4)

    def test_highlight_by_hex(self, client, uploaded):
        response = client.post('/api/highlight', json={'target': {'hex': '#ffff00'}})
        box = response.get_json()['stats']['bounding_box']
        assert box == {'min': [0.5, 0.5], 'max': [1.0, 1.0]}

    def test_highlight_without_texture(self, client):
        response = client.post('/api/highlight', json={'target': {'h': 0, 's': 100, 'v': 100}})
        assert response.status_code == 400

    def test_highlight_without_target(self, client, uploaded):
        assert client.post('/api/highlight', json={}).status_code == 400

    def test_highlight_invalid_target(self, client, uploaded):
        response = client.post('/api/highlight', json={'target': {'h': 'red'}})
        assert response.status_code == 400

    def test_clear(self, app, client, uploaded):
        client.post('/api/highlight', json={'target': {'rgb': [255, 0, 0]}})
        assert client.post('/api/clear').get_json()['status'] == 'success'

        session = app.extensions['colorhighlight']
        program = session.controller.get_program(session.handle)
        assert program.uniforms['enableHighlight'].value is False


class TestAnalyzeEndpoint:
    """Tests for the stateless analyze endpoint."""

    def test_analyze(self, client, make_quadrants):
        request = AnalyzeRequest(
            image_data=make_quadrants(32),
            target_color=HSVColor(240.0, 100.0, 100.0),
            tolerance=ToleranceWindow(),
            generation=4,
        )
        response = client.post('/api/analyze', json=request.to_dict())
        assert response.status_code == 200

        data = response.get_json()
        assert data['type'] == 'analysis-complete'
        assert data['generation'] == 4
        assert data['matchingPixels'] == 16 * 16
        assert data['boundingBox'] == {'min': [0.0, 0.5], 'max': [0.5, 1.0]}

    def test_clear_message(self, client):
        data = client.post('/api/analyze', json={'type': 'clear', 'generation': 2}).get_json()
        assert data == {'type': 'highlight-ready', 'generation': 2}

    def test_malformed_message(self, client):
        response = client.post('/api/analyze', json={'type': 'analyze'})
        assert response.status_code == 400
        assert response.get_json()['type'] == 'error'


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
