"""Unit tests for the video directory artifact registry."""

import pytest

from capture_encoder.api.artifacts import VideoDirectoryRegistry


class TestVideoDirectoryRegistry:

    @pytest.mark.asyncio
    async def test_add_file_returns_public_info(self, tmp_path):
        video = tmp_path / "final-pen-1.mp4"
        video.write_bytes(b"12345")
        registry = VideoDirectoryRegistry(tmp_path)

        info = await registry.add_file(video)

        assert info == {"filename": "final-pen-1.mp4", "url": "/videos/final-pen-1.mp4", "size": 5}
        assert registry.files() == [info]

    @pytest.mark.asyncio
    async def test_custom_prefix(self, tmp_path):
        video = tmp_path / "a.mp4"
        video.write_bytes(b"")
        registry = VideoDirectoryRegistry(tmp_path, url_prefix="/media/")

        info = await registry.add_file(video)

        assert info["url"] == "/media/a.mp4"

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            await VideoDirectoryRegistry(tmp_path).add_file(tmp_path / "nope.mp4")

    @pytest.mark.asyncio
    async def test_file_outside_directory(self, tmp_path):
        served = tmp_path / "videos"
        served.mkdir()
        outside = tmp_path / "elsewhere.mp4"
        outside.write_bytes(b"x")

        with pytest.raises(ValueError):
            await VideoDirectoryRegistry(served).add_file(outside)

    def test_resolve_existing_file(self, tmp_path):
        video = tmp_path / "final-pen-1.mp4"
        video.write_bytes(b"x")
        registry = VideoDirectoryRegistry(tmp_path)

        assert registry.resolve("final-pen-1.mp4") == video.resolve()

    def test_resolve_rejects_missing_directories_and_escapes(self, tmp_path):
        served = tmp_path / "videos"
        (served / "sub").mkdir(parents=True)
        (tmp_path / "secret.txt").write_text("x")
        registry = VideoDirectoryRegistry(served)

        assert registry.resolve("nope.mp4") is None
        assert registry.resolve("sub") is None
        assert registry.resolve("../secret.txt") is None

    @pytest.mark.asyncio
    async def test_remove_file_forgets_registration(self, tmp_path):
        video = tmp_path / "a.mp4"
        video.write_bytes(b"x")
        registry = VideoDirectoryRegistry(tmp_path)
        await registry.add_file(video)

        registry.remove_file(video)
        registry.remove_file(tmp_path.parent / "elsewhere.mp4")

        assert registry.files() == []
