__all__ = ("FetchCacheError", "UnsupportedBodyError", "BodyAlreadyUsedError", "IntegrityError")


class FetchCacheError(Exception): ...


class UnsupportedBodyError(FetchCacheError, TypeError): ...


class BodyAlreadyUsedError(FetchCacheError): ...


class IntegrityError(FetchCacheError): ...
