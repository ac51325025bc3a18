class CdnError(Exception):
  pass


class ConfigError(CdnError):
  pass


class NotFound(CdnError):
  pass


class StoreUnavailable(CdnError):
  pass


class TransformError(CdnError):
  pass


class DecodeError(TransformError):
  pass


class EncodeError(TransformError):
  pass
