from drizzle.sets import IdentitySet


class _Thing:
    def __eq__(self, other):
        return True

    def __hash__(self):
        return 0


def test_add_and_contains():
    s = IdentitySet()
    a = _Thing()
    assert len(s) == 0
    assert s.add(a) is True
    assert a in s
    assert s.add(a) is False
    assert len(s) == 1


def test_membership_uses_identity():
    s = IdentitySet()
    a, b = _Thing(), _Thing()
    s.add(a)
    assert b not in s
    assert s.add(b) is True
    assert len(s) == 2


def test_remove():
    s = IdentitySet()
    a, b, c = _Thing(), _Thing(), _Thing()
    for x in (a, b, c):
        s.add(x)
    assert s.remove(a) is True
    assert a not in s
    assert s.remove(a) is False
    assert len(s) == 2
    members = list(s)
    assert any(x is b for x in members)
    assert any(x is c for x in members)


def test_remove_last_and_only():
    s = IdentitySet()
    a = _Thing()
    s.add(a)
    assert s.remove(a) is True
    assert list(s) == []


def test_iteration_is_a_snapshot():
    s = IdentitySet()
    items = [_Thing() for _ in range(3)]
    for x in items:
        s.add(x)
    seen = 0
    for x in s:
        s.remove(x)
        seen += 1
    assert seen == 3
    assert len(s) == 0