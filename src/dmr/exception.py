"""Device-Management Runtime Exception Definitions"""


class DmrError(Exception):
    """Base exception for the device-management runtime"""

    pass


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigError(DmrError):
    """Base class for driver configuration errors"""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class ConfigNotFoundError(ConfigError):
    """A required configuration file is missing"""

    pass


class ConfigMalformedError(ConfigError):
    """A configuration file cannot be parsed or validated"""

    pass


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


class LookupMissError(DmrError):
    """Base class for lookup misses on well-formed requests"""

    def __init__(self, message: str, key: str | None = None):
        super().__init__(message)
        self.key = key


class DeviceNotExistError(LookupMissError):
    """device not exist"""

    pass


class DeviceModelNotExistError(LookupMissError):
    """device model not exist"""

    pass


class AccessTemplateNotExistError(LookupMissError):
    """access template not exist"""

    pass


class PropsConfigNotExistError(LookupMissError):
    """properties config not exist"""

    pass


class AccessConfigNotExistError(LookupMissError):
    """access config not exist"""

    pass


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------


class ValueParseError(DmrError):
    """Base class for value coercion errors"""

    def __init__(self, message: str, value=None):
        super().__init__(message)
        self.value = value


class TypeNotSupportedError(ValueParseError):
    """type not supported"""

    pass


class UnsupportedValueTypeError(ValueParseError):
    """unsupported value type"""

    pass


# ---------------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------------


class ExpressionError(DmrError):
    """Base class for mapping expression errors"""

    pass


class InvalidExpressionError(ExpressionError):
    pass


class InvalidExpressionArgsError(ExpressionError):
    pass


class UnknownExpressionMethodError(ExpressionError):
    pass


class UnsupportedArgTypeError(ExpressionError):
    pass


class DivisorZeroError(ExpressionError):
    pass


# ---------------------------------------------------------------------------
# Inbound payloads
# ---------------------------------------------------------------------------


class PayloadError(DmrError):
    """Base class for malformed inbound payloads"""

    pass


class InvalidPropertyKeyError(PayloadError):
    pass


class InvalidDeltaError(PayloadError):
    pass


class InvalidTopicError(PayloadError):
    def __init__(self, message: str, topic: str | None = None):
        super().__init__(message)
        self.topic = topic


# ---------------------------------------------------------------------------
# Model / template cross references
# ---------------------------------------------------------------------------


class CrossReferenceError(DmrError):
    """Base class for model/template cross-reference failures"""

    pass


class UnknownPropertyIdError(CrossReferenceError):
    pass


class ConfigIdNotExistError(CrossReferenceError):
    pass


class PropertyValueNotExistError(CrossReferenceError):
    pass


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class TransportError(DmrError):
    """MQTT publish/subscribe failure"""

    pass


# ---------------------------------------------------------------------------
# Callbacks
# ---------------------------------------------------------------------------


class CallbackAlreadyRegisteredError(DmrError):
    """A message callback of the same kind is already registered"""

    pass
