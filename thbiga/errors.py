"""Exceptions and warnings raised by the basis, geometry and interface layers."""


class InvalidKnotVector(ValueError):
    """The knots and degree passed to :class:`.KnotVector` do not describe
    an admissible B-spline basis."""


class OutOfDomain(ValueError):
    """A point lies outside the parameter domain of a basis."""
    def __init__(self, point, domain=None):
        self.point = point
        self.domain = domain
        msg = 'point %s outside of the parameter domain' % (point,)
        if domain is not None:
            msg += ' %s' % (domain,)
        super().__init__(msg)


class LogicError(RuntimeError):
    """A method was called although its precondition does not hold."""


class DimensionMismatch(ValueError):
    """Two objects which must have the same dimension do not."""


class UnsupportedDimension(NotImplementedError):
    """The requested operation is not available in this number of dimensions."""


class StaleHandle(RuntimeError):
    """An object derived from a :class:`.MultiPatch` was used after the
    multipatch was modified."""
    def __init__(self, created, current):
        self.created = created
        self.current = current
        super().__init__('handle created at generation %d, multipatch is at generation %d'
                % (created, current))


class NoConvergenceError(Exception):
    def __init__(self, method, num_iter, last_iterate):
        self.method = method
        self.num_iter = num_iter
        self.last_iterate = last_iterate
        super().__init__('%s did not converge in %d iterations' % (method, num_iter))


class NonConvergenceWarning(RuntimeWarning):
    """Issued when an iteration hit its iteration cap; the last iterate was
    returned instead."""
