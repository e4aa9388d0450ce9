from . import generations, plans

__all__ = ["generations", "plans"]
