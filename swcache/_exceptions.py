__all__ = ("SWCacheError", "NetworkError", "NetworkTimeout", "PrecacheError")


class SWCacheError(Exception): ...


class NetworkError(SWCacheError): ...


class NetworkTimeout(NetworkError): ...


class PrecacheError(SWCacheError): ...
