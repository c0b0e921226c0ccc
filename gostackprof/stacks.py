from gostackprof.errors import ProfileParseError

FREE_STACK_SPACE = "<free stack space>"
# The runtime allocates goroutine stacks in power-of-two sizes, never
# smaller than this.
MIN_STACK_SIZE = 2048

def round_up_to_next_pow2(num):
    power = 1
    while power < num:
        power <<= 1
    return power

def stack_profile(index, goroutines):
    """Turns a goroutine profile into a goroutine stack bytes profile.

    Every frame of every stack becomes a sample of its own, rooted at that
    frame and charged with the frame's max SP delta times the number of
    goroutines sharing the stack (a self cost, not a cumulative one). Each
    stack also gets a sample for the unused part of its stack segment,
    with a <free stack space> frame as its leaf. Together the byte values
    derived from one input sample add up to its count times the rounded
    stack size.
    """
    if not goroutines.message.sample_type:
        raise ProfileParseError("profile has no sample types")

    stacks = goroutines.copy()
    del stacks.message.sample[:]
    del stacks.message.sample_type[1:]
    stacks.add_sample_type("goroutine_space", "bytes")
    free_loc = stacks.add_function_location(FREE_STACK_SPACE)

    for s in goroutines.message.sample:
        count = s.value[0]
        locs = list(s.location_id)
        if not locs:
            continue

        deltas = [index.resolve(goroutines.function_name(loc)) for loc in locs]
        stack_used = sum(deltas)
        stack_size = max(round_up_to_next_pow2(stack_used), MIN_STACK_SIZE)
        stacks.add_sample(s, [free_loc] + locs, [count, count * (stack_size - stack_used)])

        for i, delta in enumerate(deltas):
            stacks.add_sample(s, locs[i:], [count, count * delta])

    return stacks
