"""Error taxonomy for the generation pipeline and the artifact loader.

Pipeline errors are recoverable within a run: their message becomes the
correction context for the next attempt. Loader errors are terminal for a
single load and are shown to the reader as-is.
"""


class PipelineError(Exception):
    """A generation attempt failed at one of its stages."""

    stage = "pipeline"

    @property
    def message(self) -> str:
        return str(self)


class NormalizationError(PipelineError):
    stage = "normalize"


class StaticSyntaxError(PipelineError):
    """Pre-compile structural check failed (mismatched delimiters, missing entry)."""

    stage = "validate"


class CompileError(PipelineError):
    stage = "transpile"


class StoreError(PipelineError):
    stage = "store"


class ArtifactNotFound(StoreError):
    pass


class LoaderError(Exception):
    """Base class for client-side artifact loading failures."""


class FetchError(LoaderError):
    pass


class LoadError(LoaderError):
    pass


class RenderError(LoadError):
    """The loaded component raised while rendering."""
