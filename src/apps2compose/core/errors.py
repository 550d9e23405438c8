"""Exception types raised by the converter."""


class PipelineError(Exception):
    """Fatal: the whole run is aborted and nothing is written."""


class StateFileError(PipelineError):
    """A state, template or output file could not be read or written."""


class IpSpaceExhausted(PipelineError):
    """Every address of the app subnet is already assigned."""


class ManifestError(ValueError):
    """An app.yml is missing or does not have the expected structure."""


class CompileError(Exception):
    """A spec compiler could not turn a manifest into a compose spec."""


class CaddyfileError(ValueError):
    """A Caddyfile could not be tokenized or adapted to JSON."""
