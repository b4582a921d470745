import threading

import pytest

from document_conversion_platform.db.state_tracker import FileState
from document_conversion_platform.ingest_tools.conversion import ConversionPool
from document_conversion_platform.ingest_tools.converters import ConversionError
from document_conversion_platform.ingest_tools.work_queue import WorkItem


@pytest.fixture
def pool(tmp_path, fake_converter, processed_tracker):
    pool = ConversionPool(
        converter=fake_converter,
        tracker=processed_tracker,
        scratch_dir=tmp_path / "output" / "temp",
        output_dir=tmp_path / "output",
        target_extension="pdf",
        max_workers=4
    )
    pool.start()
    yield pool
    pool.shutdown()


def test_start_creates_directories(pool):
    assert pool.scratch_dir.is_dir()
    assert pool.output_dir.is_dir()


def test_output_path_replaces_extension(pool):
    assert pool.output_path_for("report.docx") == pool.output_dir / "report.pdf"
    assert pool.output_path_for("q3.report.docx") == pool.output_dir / "q3.report.pdf"


def test_convert_claims_converts_and_marks_processed(pool, fake_converter, processed_tracker):
    output = pool.convert(WorkItem("report.docx", b"payload"))

    assert output == pool.output_dir / "report.pdf"
    assert output.read_bytes() == b"converted:payload"
    assert processed_tracker.state("report.docx") is FileState.PROCESSED

    (source, target), = fake_converter.calls
    assert source.parent == pool.scratch_dir
    assert source.suffix == ".docx"
    assert source.name != "report.docx"
    assert not source.exists()


def test_convert_aborts_when_claim_is_lost(pool, fake_converter, processed_tracker):
    processed_tracker.try_claim("report.docx")

    assert pool.convert(WorkItem("report.docx", b"payload")) is None
    assert fake_converter.calls == []
    assert not (pool.output_dir / "report.pdf").exists()


def test_failed_conversion_keeps_claim_and_removes_scratch(pool, fake_converter, processed_tracker, clock):
    fake_converter.fail = True

    with pytest.raises(ConversionError):
        pool.convert(WorkItem("report.docx", b"payload"))

    assert list(pool.scratch_dir.iterdir()) == []
    assert processed_tracker.state("report.docx") is FileState.PROCESSING

    # the claim expires and the file can be converted again
    clock.advance(100)
    fake_converter.fail = False
    assert pool.convert(WorkItem("report.docx", b"payload")) is not None


def test_unexpected_converter_errors_are_wrapped(pool, fake_converter):
    def explode(source, target):
        raise RuntimeError("segfault")

    fake_converter.convert = explode

    with pytest.raises(ConversionError, match="segfault"):
        pool.convert(WorkItem("report.docx", b"payload"))
    assert list(pool.scratch_dir.iterdir()) == []


def test_scratch_write_failure_fails_only_that_task(pool, fake_converter, processed_tracker):
    pool.scratch_dir.rmdir()

    with pytest.raises(OSError):
        pool.convert(WorkItem("report.docx", b"payload"))
    assert fake_converter.calls == []

    pool.scratch_dir.mkdir()
    assert pool.convert(WorkItem("letter.docx", b"payload")) is not None


def test_same_file_submitted_twice_is_converted_once(pool, fake_converter, processed_tracker):
    start = threading.Event()
    original = fake_converter.convert

    def slow_convert(source, target):
        start.wait(timeout=2)
        return original(source, target)

    fake_converter.convert = slow_convert

    futures = [pool.submit(WorkItem("report.docx", b"payload")) for _ in range(2)]
    start.set()
    results = [future.result(timeout=5) for future in futures]

    assert sorted(results, key=lambda r: r is None) == [pool.output_dir / "report.pdf", None]
    assert len(fake_converter.calls) == 1
    assert processed_tracker.state("report.docx") is FileState.PROCESSED


def test_submit_failure_is_reported_through_future(pool, fake_converter):
    fake_converter.fail = True

    future = pool.submit(WorkItem("report.docx", b"payload"))

    assert isinstance(future.exception(timeout=5), ConversionError)


def test_shutdown_removes_scratch_directory(tmp_path, fake_converter, processed_tracker):
    pool = ConversionPool(fake_converter, processed_tracker, tmp_path / "scratch", tmp_path / "out")
    pool.start()
    (pool.scratch_dir / "leftover").write_text("x")

    pool.shutdown()

    assert not (tmp_path / "scratch").exists()
    assert pool.max_workers >= 1


def test_submit_requires_started_pool(tmp_path, fake_converter, processed_tracker):
    pool = ConversionPool(fake_converter, processed_tracker, tmp_path / "scratch", tmp_path / "out")

    with pytest.raises(RuntimeError):
        pool.submit(WorkItem("report.docx", b"payload"))
