"""
Unit tests for the archive aggregator.

Tests cover:
- Every object under the root lands in the archive exactly once
- Entry names are relative to the walk root
- Appends all happen before the single finalize
- Listing, fetch and writer failures stop the aggregation without finalizing
- Abort stops further fetches
"""

import io
import zipfile

import pytest

from photozip.zip_server.archive.aggregator import ArchiveAggregator, relative_path
from photozip.zip_server.archive.errors import ArchiveAborted, ArchiveWriteError, WalkRootViolation
from photozip.zip_server.archive.zip_stream import ArchiveState, ArchiveStream
from photozip.zip_server.storage.base import FetchError, ListingError
from photozip.zip_server.storage.memory import InMemoryObjectSource

ROOT = "photosession/u1/f1/"


class Collector:
    """Sink recording every chunk it receives."""

    def __init__(self):
        self.chunks = []

    async def __call__(self, data):
        self.chunks.append(data)

    def zip(self):
        return zipfile.ZipFile(io.BytesIO(b"".join(self.chunks)))


class RecordingArchive(ArchiveStream):
    """ArchiveStream logging append/finalize calls in order."""

    def __init__(self, sink, abort_after=None):
        super().__init__(sink)
        self.calls = []
        self.abort_after = abort_after

    async def append(self, name, content):
        self.calls.append(("append", name))
        written = await super().append(name, content)
        if self.abort_after is not None and len(self.entry_names) >= self.abort_after:
            self.abort("client disconnected")
        return written

    async def finalize(self):
        self.calls.append(("finalize", None))
        return await super().finalize()


class TestRelativePath:
    """Tests for relative_path."""

    def test_strips_root(self):
        assert relative_path(ROOT + "sub/a.jpg", ROOT) == "sub/a.jpg"

    def test_root_itself_rejected(self):
        with pytest.raises(WalkRootViolation):
            relative_path(ROOT, ROOT)

    def test_outside_root_rejected(self):
        with pytest.raises(WalkRootViolation) as exc_info:
            relative_path("photosession/u2/f1/a.jpg", ROOT)

        assert exc_info.value.root == ROOT


class TestArchiveAggregator:
    """Tests for ArchiveAggregator."""

    @pytest.fixture
    def source(self):
        """Create a fresh source."""
        return InMemoryObjectSource(chunk_size=8)

    @pytest.fixture
    def sink(self):
        """Create a recording sink."""
        return Collector()

    @pytest.mark.asyncio
    async def test_flat_and_nested_folder(self, source, sink):
        """Objects at the root and in a subfolder are both archived."""
        await source.connect()
        source.put(ROOT + "a.jpg", b"image-a")
        source.put(ROOT + "sub/b.jpg", b"image-b")
        archive = ArchiveStream(sink)

        stats = await ArchiveAggregator(source).aggregate(ROOT, archive)

        zf = sink.zip()
        assert sorted(zf.namelist()) == ["a.jpg", "sub/b.jpg"]
        assert zf.read("a.jpg") == b"image-a"
        assert zf.read("sub/b.jpg") == b"image-b"
        assert stats.appended == 2
        assert stats.folders == 2
        assert stats.bytes_written == len(b"".join(sink.chunks))
        assert archive.state is ArchiveState.FINALIZED

    @pytest.mark.asyncio
    async def test_empty_folder(self, source, sink):
        """An empty folder still produces a valid empty archive."""
        await source.connect()
        archive = ArchiveStream(sink)

        stats = await ArchiveAggregator(source).aggregate(ROOT, archive)

        assert sink.zip().namelist() == []
        assert stats.appended == 0
        assert archive.state is ArchiveState.FINALIZED

    @pytest.mark.asyncio
    async def test_every_object_exactly_once(self, source, sink):
        """Deep trees are archived completely with unique entries."""
        await source.connect()
        expected = []
        for folder in ("", "a/", "a/b/", "a/b/c/", "d/"):
            for i in range(3):
                name = f"{folder}img{i}.jpg"
                source.put(ROOT + name, name.encode())
                expected.append(name)
        source.put(ROOT + "a/", b"")

        await ArchiveAggregator(source).aggregate(ROOT, ArchiveStream(sink))

        zf = sink.zip()
        assert sorted(zf.namelist()) == sorted(expected)
        for name in expected:
            assert zf.read(name) == name.encode()

    @pytest.mark.asyncio
    async def test_only_objects_under_root(self, source, sink):
        """Sibling folders sharing a name prefix are excluded."""
        await source.connect()
        source.put(ROOT + "a.jpg", b"a")
        source.put("photosession/u1/f10/x.jpg", b"x")
        source.put("photosession/u2/f1/y.jpg", b"y")

        await ArchiveAggregator(source).aggregate(ROOT, ArchiveStream(sink))

        assert sink.zip().namelist() == ["a.jpg"]

    @pytest.mark.asyncio
    async def test_appends_precede_single_finalize(self, source, sink):
        """Finalize is called exactly once, after every append."""
        await source.connect()
        for name in ("a.jpg", "b.jpg", "sub/c.jpg"):
            source.put(ROOT + name, b"data")
        archive = RecordingArchive(sink)

        await ArchiveAggregator(source).aggregate(ROOT, archive)

        assert archive.calls == [
            ("append", "a.jpg"),
            ("append", "b.jpg"),
            ("append", "sub/c.jpg"),
            ("finalize", None),
        ]

    @pytest.mark.asyncio
    async def test_zero_byte_object_archived(self, source, sink):
        """Empty objects are archived as empty entries."""
        await source.connect()
        source.put(ROOT + "empty.txt", b"")

        await ArchiveAggregator(source).aggregate(ROOT, ArchiveStream(sink))

        assert sink.zip().read("empty.txt") == b""

    @pytest.mark.asyncio
    async def test_object_without_body_skipped(self, source, sink):
        """Objects whose read returns no body are skipped, not fatal."""
        await source.connect()
        source.put(ROOT + "a.jpg", b"a")
        source.put(ROOT + "ghost.jpg", None)

        stats = await ArchiveAggregator(source).aggregate(ROOT, ArchiveStream(sink))

        assert sink.zip().namelist() == ["a.jpg"]
        assert stats.skipped == 1
        assert stats.appended == 1

    @pytest.mark.asyncio
    async def test_fetch_failure_stops_aggregation(self, source, sink):
        """A failing fetch aborts the walk; later objects are never fetched."""
        await source.connect()
        for i in range(5):
            source.put(f"{ROOT}img{i}.jpg", b"data")
        source.inject_fetch_failure(f"{ROOT}img2.jpg")
        archive = RecordingArchive(sink)

        with pytest.raises(FetchError):
            await ArchiveAggregator(source).aggregate(ROOT, archive)

        assert source.get_calls == [f"{ROOT}img0.jpg", f"{ROOT}img1.jpg", f"{ROOT}img2.jpg"]
        assert archive.calls == [("append", "img0.jpg"), ("append", "img1.jpg")]
        assert archive.state is not ArchiveState.FINALIZED

    @pytest.mark.asyncio
    async def test_mid_body_failure_stops_aggregation(self, source, sink):
        """A body that fails mid-stream is fatal and nothing is finalized."""
        await source.connect()
        source.put(ROOT + "a.jpg", b"x" * 40)
        source.put(ROOT + "b.jpg", b"y")
        source.inject_fetch_failure(ROOT + "a.jpg", after_chunks=2)
        archive = RecordingArchive(sink)

        with pytest.raises(FetchError):
            await ArchiveAggregator(source).aggregate(ROOT, archive)

        assert source.get_calls == [ROOT + "a.jpg"]
        assert ("finalize", None) not in archive.calls

    @pytest.mark.asyncio
    async def test_listing_failure_stops_aggregation(self, source, sink):
        """A failing subfolder listing is fatal."""
        await source.connect()
        source.put(ROOT + "a.jpg", b"a")
        source.put(ROOT + "sub/b.jpg", b"b")
        source.inject_listing_failure(ROOT + "sub/")
        archive = RecordingArchive(sink)

        with pytest.raises(ListingError):
            await ArchiveAggregator(source).aggregate(ROOT, archive)

        assert archive.calls == [("append", "a.jpg")]

    @pytest.mark.asyncio
    async def test_root_listing_failure(self, source, sink):
        """A failing root listing fetches nothing."""
        await source.connect()
        source.put(ROOT + "a.jpg", b"a")
        source.inject_listing_failure(ROOT)

        with pytest.raises(ListingError):
            await ArchiveAggregator(source).aggregate(ROOT, ArchiveStream(sink))

        assert source.get_calls == []
        assert sink.chunks == []

    @pytest.mark.asyncio
    async def test_abort_stops_fetching(self, source, sink):
        """After an abort no further object is fetched."""
        await source.connect()
        for i in range(50):
            source.put(f"{ROOT}img{i:02d}.jpg", b"data")
        archive = RecordingArchive(sink, abort_after=1)

        with pytest.raises(ArchiveAborted):
            await ArchiveAggregator(source).aggregate(ROOT, archive)

        assert len(source.get_calls) == 1
        assert archive.calls == [("append", "img00.jpg")]
        assert archive.state is ArchiveState.ABORTED

    @pytest.mark.asyncio
    async def test_abort_during_fetch(self, source, sink):
        """An abort raised while a fetch is pending is not appended."""
        await source.connect()
        source.put(ROOT + "a.jpg", b"a")
        source.put(ROOT + "b.jpg", b"b")
        archive = RecordingArchive(sink)
        source.add_get_hook(lambda key: archive.abort("client disconnected"))

        with pytest.raises(ArchiveAborted):
            await ArchiveAggregator(source).aggregate(ROOT, archive)

        assert source.get_calls == [ROOT + "a.jpg"]
        assert archive.calls == [("append", "a.jpg")]
        assert archive.entry_names == []

    @pytest.mark.asyncio
    async def test_already_aborted_lists_nothing(self, source, sink):
        """An aborted request never reaches the store."""
        await source.connect()
        source.put(ROOT + "a.jpg", b"a")
        archive = ArchiveStream(sink)
        archive.abort()

        with pytest.raises(ArchiveAborted):
            await ArchiveAggregator(source).aggregate(ROOT, archive)

        assert source.list_calls == []
        assert source.get_calls == []

    @pytest.mark.asyncio
    async def test_writer_failure_stops_aggregation(self, source, sink, monkeypatch):
        """A failing ZIP writer is fatal; nothing else is fetched."""
        await source.connect()
        source.put(ROOT + "a.jpg", b"a")
        source.put(ROOT + "b.jpg", b"b")

        def broken_open(self, *args, **kwargs):
            raise RuntimeError("writer broken")

        monkeypatch.setattr(zipfile.ZipFile, "open", broken_open)
        archive = RecordingArchive(sink)

        with pytest.raises(ArchiveWriteError):
            await ArchiveAggregator(source).aggregate(ROOT, archive)

        assert source.get_calls == [ROOT + "a.jpg"]
        assert archive.calls == [("append", "a.jpg")]
        assert archive.state is ArchiveState.FAILED

    @pytest.mark.asyncio
    async def test_closed_archive_rejects_entries(self, source, sink):
        """An archive that no longer accepts entries is a write failure."""
        await source.connect()
        source.put(ROOT + "a.jpg", b"a")
        archive = ArchiveStream(sink)
        await archive.finalize()

        with pytest.raises(ArchiveWriteError, match="cannot append a.jpg"):
            await ArchiveAggregator(source).aggregate(ROOT, archive)

    @pytest.mark.asyncio
    async def test_closed_archive_cannot_finalize(self, source, sink):
        """Finalizing an already sealed archive is a write failure."""
        await source.connect()
        archive = ArchiveStream(sink)
        await archive.finalize()

        with pytest.raises(ArchiveWriteError, match="cannot finalize"):
            await ArchiveAggregator(source).aggregate(ROOT, archive)
