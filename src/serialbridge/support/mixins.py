def quote(val):
    return "'" + str(val) + "'" if val is not None else "None"


class StringerMixin:
    """ renders the class name and the attribute dictionary in key sorted order """

    def __repr__(self):
        return self.__class__.__name__ + self._sorted_items_string()

    def _sorted_items_string(self):
        return "{" + ", ".join(["'" + str(key) + "': " + quote(val)
                                for key, val in sorted(self.__dict__.items())]) + "}"


class ValueObjectMixin(StringerMixin):
    """ Equality and hashing over the attribute dictionary, for small immutable value objects. """

    def __eq__(self, other):
        return isinstance(other, self.__class__) and self.__dict__ == other.__dict__

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash((self.__class__, tuple(sorted(self.__dict__.items()))))
