"""Tests for the analyze/export entry points."""

import json
from pathlib import Path

from packs_lifecycle.buildpacks.schema import BuildpackGroup
from packs_lifecycle.cache.service import run_analyze, run_export
from packs_lifecycle.config import Settings
from packs_lifecycle.errors import (
    EXIT_FAILED,
    EXIT_FAILED_BUILD,
    EXIT_FAILED_SAVE,
    ImageNotFoundError,
    ImageSaveError,
    ImageSourceError,
    ImageUnauthorizedError,
)
from packs_lifecycle.images.models import Image, Layer
from packs_lifecycle.layers.archive import LayerArchive, compute_diff_id
from packs_lifecycle.metadata.codec import decode_image
from packs_lifecycle.types import LayerRef, OutcomeStatus


class FakeSource:
    """In-memory image source recording saves."""

    def __init__(
        self,
        name: str,
        image: Image | None = None,
        error: Exception | None = None,
        save_error: Exception | None = None,
    ):
        self.name = name
        self._image = image
        self._error = error
        self._save_error = save_error
        self.saved: list[Image] = []
        self.closed = False

    def image(self) -> Image:
        if self._error is not None:
            raise self._error
        if self._image is None:
            raise ImageNotFoundError(f"{self.name} not found", operation="read image")
        return self._image

    def save(self, image: Image) -> str:
        if self._save_error is not None:
            raise self._save_error
        self.saved.append(image)
        return image.config_digest()

    def close(self) -> None:
        self.closed = True


class FakeSources:
    """Source factory keyed by image name."""

    def __init__(self, *sources: FakeSource):
        self.sources = {source.name: source for source in sources}

    def __call__(self, name: str) -> FakeSource:
        return self.sources.setdefault(name, FakeSource(name))


def stack_image() -> Image:
    data = b"stack"
    layer = Layer.from_archive(LayerArchive(data=data, diff_id=compute_diff_id(data)))
    return Image.empty().with_layers(layer)


def write_layer(launch_dir: Path, bp: str, name: str, content: str = "x") -> None:
    layer = launch_dir / bp / name
    layer.mkdir(parents=True)
    (layer / "file").write_text(content)


class TestRunAnalyze:
    """Test run_analyze function."""

    def test_metadata_text(
        self, launch_dir: Path, group: BuildpackGroup, settings: Settings
    ) -> None:
        """A supplied metadata document restores configs only."""
        text = json.dumps(
            {"bp.A": {"deps": {"data": {"v": 1}, "diffid": "sha256:abc"}}}
        )

        outcome = run_analyze(None, group, metadata_text=text, settings=settings)

        assert outcome.status is OutcomeStatus.OK
        assert (launch_dir / "bp.A" / "deps.toml").read_text() == "v = 1\n"
        assert not (launch_dir / "bp.A" / "deps").exists()

    def test_invalid_metadata_text(
        self, group: BuildpackGroup, settings: Settings
    ) -> None:
        """A malformed metadata document is fatal."""
        outcome = run_analyze(None, group, metadata_text="{not json", settings=settings)

        assert outcome.status is OutcomeStatus.FATAL
        assert outcome.code == "invalid_metadata"
        assert outcome.exit_code == EXIT_FAILED_BUILD

    def test_no_repo(self, group: BuildpackGroup, settings: Settings) -> None:
        """Without a repository or metadata there is nothing to restore."""
        outcome = run_analyze(None, group, settings=settings)
        assert outcome.status is OutcomeStatus.SKIPPED
        assert outcome.success

    def test_missing_image_skipped(
        self, group: BuildpackGroup, settings: Settings
    ) -> None:
        """A missing previous image is skipped and the source is closed."""
        factory = FakeSources()

        outcome = run_analyze(
            "example/app", group, settings=settings, source_factory=factory
        )

        assert outcome.status is OutcomeStatus.SKIPPED
        assert outcome.code == "image_not_found"
        assert factory.sources["example/app"].closed

    def test_unauthorized_skipped(
        self, group: BuildpackGroup, settings: Settings
    ) -> None:
        """An image needing authentication is skipped."""
        factory = FakeSources(
            FakeSource("example/app", error=ImageUnauthorizedError("denied"))
        )
        outcome = run_analyze(
            "example/app", group, settings=settings, source_factory=factory
        )
        assert outcome.status is OutcomeStatus.SKIPPED
        assert outcome.code == "unauthorized"

    def test_transport_error_fatal(
        self, group: BuildpackGroup, settings: Settings
    ) -> None:
        """Other image errors are fatal."""
        factory = FakeSources(
            FakeSource(
                "example/app",
                error=ImageSourceError("connection reset", code="network_error"),
            )
        )
        outcome = run_analyze(
            "example/app", group, settings=settings, source_factory=factory
        )
        assert outcome.status is OutcomeStatus.FATAL
        assert outcome.code == "network_error"
        assert outcome.exit_code == EXIT_FAILED
        assert factory.sources["example/app"].closed


class TestRunExport:
    """Test run_export function."""

    def test_saves_to_repository(
        self, launch_dir: Path, group: BuildpackGroup, settings: Settings
    ) -> None:
        """The assembled image is saved to the repository source."""
        write_layer(launch_dir, "bp.A", "deps")
        factory = FakeSources(FakeSource("stack/run", image=stack_image()))

        outcome = run_export(
            "example/app", "stack/run", group=group, settings=settings,
            source_factory=factory,
        )

        assert outcome.status is OutcomeStatus.OK
        assert outcome.details["built"] == ["bp.A/deps"]
        repo = factory.sources["example/app"]
        assert len(repo.saved) == 1
        saved = repo.saved[0]
        assert outcome.details["image_id"] == saved.config_digest()
        assert len(saved.layers) == 2
        metadata = decode_image(saved, settings.metadata_label)
        assert metadata.layer(LayerRef("bp.A", "deps")) is not None
        assert repo.closed
        assert factory.sources["stack/run"].closed

    def test_reuses_previous_image(
        self, launch_dir: Path, group: BuildpackGroup, settings: Settings
    ) -> None:
        """A second export reuses layers of the image saved by the first."""
        write_layer(launch_dir, "bp.A", "deps")
        factory = FakeSources(FakeSource("stack/run", image=stack_image()))
        run_export(
            "example/app", "stack/run", group=group, settings=settings,
            source_factory=factory,
        )
        first = factory.sources["example/app"].saved[0]

        second_factory = FakeSources(
            FakeSource("stack/run", image=stack_image()),
            FakeSource("example/app", image=first),
        )
        outcome = run_export(
            "example/app", "stack/run", group=group, settings=settings,
            source_factory=second_factory,
        )

        assert outcome.details["reused"] == ["bp.A/deps"]
        assert outcome.details["built"] == []

    def test_missing_stack_fatal(
        self, launch_dir: Path, group: BuildpackGroup, settings: Settings
    ) -> None:
        """A missing base image is fatal and nothing is saved."""
        factory = FakeSources()

        outcome = run_export(
            "example/app", "stack/run", group=group, settings=settings,
            source_factory=factory,
        )

        assert outcome.status is OutcomeStatus.FATAL
        assert outcome.code == "image_not_found"
        assert factory.sources["example/app"].saved == []

    def test_save_failure(
        self, launch_dir: Path, group: BuildpackGroup, settings: Settings
    ) -> None:
        """A failed save maps to the save exit code."""
        write_layer(launch_dir, "bp.A", "deps")
        factory = FakeSources(
            FakeSource("stack/run", image=stack_image()),
            FakeSource("example/app", save_error=ImageSaveError("push refused")),
        )

        outcome = run_export(
            "example/app", "stack/run", group=group, settings=settings,
            source_factory=factory,
        )

        assert outcome.status is OutcomeStatus.FATAL
        assert outcome.exit_code == EXIT_FAILED_SAVE

    def test_export_error_fatal(
        self, tmp_path: Path, group: BuildpackGroup, settings: Settings
    ) -> None:
        """A missing launch directory is a fatal export error."""
        factory = FakeSources(FakeSource("stack/run", image=stack_image()))

        outcome = run_export(
            "example/app", "stack/run", group=group,
            launch_dir=tmp_path / "missing", settings=settings,
            source_factory=factory,
        )

        assert outcome.status is OutcomeStatus.FATAL
        assert outcome.code == "launch_dir_missing"
        assert outcome.exit_code == EXIT_FAILED_BUILD
