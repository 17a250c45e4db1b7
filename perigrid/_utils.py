"""
Small utility classes: the parameter struct and the error types.
"""

import re


def isidentifier(s):
    if not isinstance(s, str):
        return False
    return re.match(r'^\w+$', s, re.UNICODE) and re.match(r'^[0-9]', s) is None


class ConfigurationError(ValueError):
    """ Raised when the configuration describes grids that cannot be
    built, e.g. a malformed GridSpacingSchedule, a PassiveEdgeWidth that
    leaves no active region, or levels whose grids do not nest.
    These are fatal; the run should be aborted.
    """
    pass


class GeometryWarning(UserWarning):
    """ Emitted when a requested grid spacing had to be changed to fit
    the periodic dimension.
    """
    pass


class Parameters(dict):
    """ Parameters(*args, **kwargs)

    A dict in which the items can be get/set as attributes. Used to hold
    the configuration of the grid computations, where each key maps to
    a scalar or a list of entries (like the lines of a parameter file).

    Example
    -------
    params = Parameters(FinalGridSpacingInVoxels=8.0)
    params.GridSpacingSchedule = [4.0, 2.0, 1.0]
    params.count('GridSpacingSchedule')  # -> 3

    """

    __slots__ = []

    def __repr__(self):
        items = ', '.join(['%s=%r' % (key, val) if isidentifier(key)
                           else '**{%r: %r}' % (key, val)
                           for key, val in self.items()])
        return 'Parameters(%s)' % items

    def __getattr__(self, key):
        # Only called when normal attribute lookup fails
        try:
            return self[key]
        except KeyError:
            raise AttributeError('No parameter %r.' % key) from None

    def __setattr__(self, key, val):
        if hasattr(type(self), key):
            raise AttributeError('%r is the name of a method; set '
                                 'it via params[%r] = value.' % (key, key))
        self[key] = val

    def __dir__(self):
        return dir(type(self)) + [key for key in self if isidentifier(key)]

    def entries(self, key):
        """ entries(key)

        Get the entries of the given key as a list. A missing key or a
        None value gives an empty list, a scalar a list of one element.

        """
        val = self.get(key, None)
        if val is None:
            return []
        elif isinstance(val, (list, tuple)):
            return list(val)
        elif hasattr(val, 'ravel'):
            return list(val.ravel())
        else:
            return [val]

    def count(self, key):
        """ count(key)

        The number of entries for the given key (zero if absent).

        """
        return len(self.entries(key))
