"""Image fetcher: pull every image of a release as a unit.

Each service's image template is resolved against the release tag (``latest``
when none was given) and the registry user, then pulled. The pull is all or
nothing from the caller's point of view: if any image fails, the result is
``Err(FetchError)`` naming every failed image, and the driver takes no
container lifecycle action.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from insight360.core.errors import ContainerRuntimeError, FetchError
from insight360.core.logging import get_logger
from insight360.core.result import Err, Ok, Result
from insight360.deploy.container import ContainerRuntime
from insight360.deploy.services import ReleaseDescriptor

logger = get_logger(__name__)


class ImageSet(BaseModel):
    """Images pulled for a release."""

    tag: str
    images: dict[str, str] = Field(default_factory=dict)


class ImageFetcher:
    def __init__(self, runtime: ContainerRuntime) -> None:
        self.runtime = runtime

    def pull(self, release: ReleaseDescriptor) -> Result[ImageSet]:
        refs = release.image_refs()
        logger.info("images.pulling", tag=release.tag, images=list(refs.values()))

        failed: dict[str, str] = {}
        for service, image in refs.items():
            try:
                self.runtime.pull_image(image)
            except ContainerRuntimeError as exc:
                failed[image] = exc.message.splitlines()[0]
                logger.error("image.pull_failed", service=service, image=image, error=exc.message)

        if failed:
            return Err(FetchError(failed))

        logger.info("images.pulled", tag=release.tag, count=len(refs))
        return Ok(ImageSet(tag=release.tag, images=refs))
