import pytest
from binaries import TEXT_START, build_pclntab
from profiles import build_profile, stack_names
from gostackprof.errors import ProfileParseError
from gostackprof.pclntab import FuncIndex, LineTable
from gostackprof.stacks import FREE_STACK_SPACE, round_up_to_next_pow2, stack_profile

FUNCS = [
    ("main.f", 0x80, [(0, 8), (100, 0x70), (0, 8)]),
    ("main.g", 0x100, [(0, 8), (200, 0xf0), (0, 8)]),
    ("main.deep", 0x40, [(0, 4), (1500, 0x38), (0, 4)]),
    ("runtime.main", 0x40, [(0, 4), (88, 0x38), (0, 4)]),
]

@pytest.fixture
def index():
    return FuncIndex(LineTable(build_pclntab(FUNCS), TEXT_START))

def samples_of(profile):
    return [(stack_names(profile, s), list(s.value)) for s in profile.message.sample]

@pytest.mark.parametrize("num, expected", [
    (0, 1), (1, 1), (2, 2), (3, 4), (300, 512), (512, 512), (513, 1024), (2049, 4096),
])
def test_round_up_to_next_pow2(num, expected):
    assert round_up_to_next_pow2(num) == expected

def test_two_frames(index):
    goroutines = build_profile([(5, ["main.g", "main.f"])])
    stacks = stack_profile(index, goroutines)
    assert stacks.sample_types() == [("goroutine", "count"), ("goroutine_space", "bytes")]
    assert samples_of(stacks) == [
        ([FREE_STACK_SPACE, "main.g", "main.f"], [5, 5 * (2048 - 300)]),
        (["main.g", "main.f"], [5, 1000]),
        (["main.f"], [5, 500]),
    ]

def test_empty_stack(index):
    stacks = stack_profile(index, build_profile([(3, [])]))
    assert len(stacks.message.sample) == 0

def test_unknown_functions_cost_nothing(index):
    stacks = stack_profile(index, build_profile([(1, ["runtime.gcBgMarkWorker", "main.f"])]))
    assert samples_of(stacks)[1:] == [
        (["runtime.gcBgMarkWorker", "main.f"], [1, 0]),
        (["main.f"], [1, 100]),
    ]

def test_large_stacks_round_up(index):
    stacks = stack_profile(index, build_profile([(2, ["main.deep", "main.deep", "runtime.main"])]))
    # 1500 + 1500 + 88 = 3088 bytes in use, in a 4096 byte stack.
    assert samples_of(stacks)[0] == (
        [FREE_STACK_SPACE, "main.deep", "main.deep", "runtime.main"], [2, 2 * (4096 - 3088)])

@pytest.mark.parametrize("stack", [
    ["main.g", "main.f", "runtime.main"],
    ["main.deep", "main.g", "main.deep", "runtime.main"],
    ["runtime.goexit"],
])
def test_bytes_add_up_to_stack_size(index, stack):
    count = 7
    stacks = stack_profile(index, build_profile([(count, stack)]))
    used = sum(index.resolve(name) for name in stack)
    stack_size = max(round_up_to_next_pow2(used), 2048)
    assert sum(s.value[1] for s in stacks.message.sample) == count * stack_size
    assert len(stacks.message.sample) == len(stack) + 1
    assert all(s.value[0] == count for s in stacks.message.sample)

def test_multiple_samples(index):
    goroutines = build_profile([
        (5, ["main.g", "main.f"]),
        (1, []),
        (3, ["main.f", "runtime.main"]),
    ])
    stacks = stack_profile(index, goroutines)
    assert len(stacks.message.sample) == 3 + 3
    assert sum(s.value[1] for s in stacks.message.sample) == 5 * 2048 + 3 * 2048
    # The input profile is left untouched.
    assert len(goroutines.message.sample) == 3
    assert goroutines.sample_types() == [("goroutine", "count")]

def test_free_stack_space_location_is_shared(index):
    stacks = stack_profile(index, build_profile([(1, ["main.f"]), (2, ["main.g"])]))
    free_locs = {s.location_id[0] for s in stacks.message.sample
                 if stack_names(stacks, s)[0] == FREE_STACK_SPACE}
    assert len(free_locs) == 1
    names = [stacks.string(f.name) for f in stacks.message.function]
    assert names.count(FREE_STACK_SPACE) == 1

def test_extra_sample_types_are_dropped(index):
    goroutines = build_profile([(4, ["main.f"])],
                               sample_types=[("goroutine", "count"), ("other", "bytes")])
    stacks = stack_profile(index, goroutines)
    assert stacks.sample_types() == [("goroutine", "count"), ("goroutine_space", "bytes")]
    assert all(len(s.value) == 2 for s in stacks.message.sample)

def test_labels_are_kept(index):
    goroutines = build_profile([(1, ["main.g", "main.f"])])
    sample = goroutines.message.sample[0]
    sample.label.add(key=goroutines.intern("worker"), str=goroutines.intern("7"))
    stacks = stack_profile(index, goroutines)
    for s in stacks.message.sample:
        assert [(stacks.string(label.key), stacks.string(label.str)) for label in s.label] == [("worker", "7")]

def test_no_sample_types(index):
    goroutines = build_profile([])
    del goroutines.message.sample_type[:]
    with pytest.raises(ProfileParseError):
        stack_profile(index, goroutines)
