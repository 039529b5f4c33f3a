"""
Enforcement: idempotent admits, best-effort failures, orphan reconciliation,
and the iptables/tc command lines the shell executor produces.
"""
import json

import pytest

from conftest import IP_A1, IP_B2, MAC_A1, MAC_B2
from hotspot.services.command_executor import (
    ShellCommandExecutor, class_id, filter_handle, parse_allow_rules,
    parse_shaping_interfaces, parse_shaping_targets, shaping_slot
)
from hotspot.exceptions import EnforcementFailure
from hotspot.services.enforcement import EnforcementService
from hotspot.utils.shell import CommandResult


class ScriptedRunner:
    """Stands in for run_command; answers by command prefix"""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []

    async def __call__(self, args, timeout=5.0, input_text=None):
        self.calls.append(list(args))
        for prefix, response in self.responses.items():
            if tuple(args[:len(prefix)]) == prefix:
                returncode, stdout = response
                return CommandResult(list(args), returncode, stdout, "" if returncode == 0 else "error")
        return CommandResult(list(args), 0, "", "")


@pytest.fixture
def enforcement(executor):
    return EnforcementService(executor)


@pytest.mark.asyncio
async def test_admit_twice_leaves_identical_rule_state(enforcement, executor):
    await enforcement.admit(MAC_A1, IP_A1, 10, 5)
    first = executor.snapshot()
    await enforcement.admit(MAC_A1, IP_A1, 10, 5)

    assert executor.snapshot() == first
    assert first == ([(MAC_A1, IP_A1)], {"br0": {IP_A1: (10, 5)}})


@pytest.mark.asyncio
async def test_unlimited_admit_installs_no_shaping(enforcement, executor):
    assert await enforcement.admit(MAC_A1, IP_A1, 0, 0) is True
    assert executor.snapshot() == ([(MAC_A1, IP_A1)], {})


@pytest.mark.asyncio
async def test_revoke_is_idempotent(enforcement, executor):
    await enforcement.admit(MAC_A1, IP_A1, 10, 10)

    assert await enforcement.revoke(MAC_A1, IP_A1) is True
    assert await enforcement.revoke(MAC_A1, IP_A1) is True
    assert executor.snapshot() == ([], {})


@pytest.mark.asyncio
async def test_failures_are_reported_not_raised(enforcement, executor):
    executor.fail.add("apply_allow")

    assert await enforcement.admit(MAC_A1, IP_A1, 10, 10) is False
    # shaping is still attempted after the allow rule failed
    assert executor.shaping["br0"][IP_A1] == (10, 10)


@pytest.mark.asyncio
async def test_shaping_follows_serving_interface(enforcement, executor):
    executor.interfaces[IP_B2] = "wlan0"

    await enforcement.admit(MAC_B2, IP_B2, 4, 2)

    assert executor.shaping["wlan0"] == {IP_B2: (4, 2)}


@pytest.mark.asyncio
async def test_reconcile_removes_only_orphans(enforcement, executor):
    await enforcement.admit(MAC_A1, IP_A1, 10, 10)
    await enforcement.admit(MAC_B2, IP_B2, 10, 10)
    executor.allow.add((MAC_A1, "10.0.0.200"))
    executor.shaping.setdefault("wlan0", {})["10.0.0.201"] = (1, 1)

    removed = await enforcement.reconcile(lambda: [(MAC_A1, IP_A1)])

    assert removed == {"shaping": 2, "allow": 2}
    assert executor.snapshot() == ([(MAC_A1, IP_A1)], {"br0": {IP_A1: (10, 10)}})


@pytest.mark.asyncio
async def test_reconcile_reads_sessions_after_listing_rules(enforcement, executor):
    await enforcement.admit(MAC_A1, IP_A1, 10, 10)
    order = []

    original = executor.list_allow_rules

    async def listing():
        order.append("list")
        return await original()

    executor.list_allow_rules = listing

    def load_active():
        order.append("load")
        return [(MAC_A1, IP_A1)]

    await enforcement.reconcile(load_active)
    assert order == ["list", "load"]


# ========== SHELL EXECUTOR ==========

def test_shaping_slot_is_stable_and_distinct_within_a_slash_21():
    assert shaping_slot("10.0.0.23") == shaping_slot("10.0.8.23")
    slots = {shaping_slot(f"10.0.{third}.{fourth}") for third in range(8) for fourth in range(256)}
    assert len(slots) == 2048
    assert class_id("10.0.0.23") == "1:1018"
    assert filter_handle("10.0.0.23") == "800::18"


def test_shaping_slot_refuses_non_ipv4():
    with pytest.raises(EnforcementFailure):
        shaping_slot("fd00::23")


@pytest.mark.asyncio
async def test_ipv6_address_is_reported_not_raised():
    enforcement = EnforcementService(ShellCommandExecutor(runner=ScriptedRunner()))

    assert await enforcement.admit(MAC_A1, "fd00::23", 10, 5) is False
    assert await enforcement.revoke(MAC_A1, "fd00::23") is False


def test_parse_allow_rules():
    output = (
        "-P FORWARD DROP\n"
        "-A FORWARD -s 10.0.0.23/32 -m mac --mac-source aa:bb:cc:00:00:a1 "
        "-m comment --comment hotspot-allow -j ACCEPT\n"
        "-A FORWARD -s 10.0.0.50/32 -j ACCEPT\n"
    )
    assert parse_allow_rules(output) == {(MAC_A1, IP_A1)}


def test_parse_shaping_targets_reads_src_and_dst_matches():
    output = (
        "filter parent 1: protocol ip pref 1 u32 chain 0 fh 800::18 order 24 key ht 800 bkt 0 flowid 1:1018\n"
        "  match 0a000017/ffffffff at 16\n"
        "filter parent ffff: protocol ip pref 1 u32 chain 0 fh 800::2b order 43 key ht 800 bkt 0\n"
        "  match 0a00002a/ffffffff at 12\n"
    )
    assert parse_shaping_targets(output) == {IP_A1, IP_B2}


def test_parse_shaping_interfaces():
    output = (
        "qdisc noqueue 0: dev lo root refcnt 2\n"
        "qdisc htb 1: dev br0 root refcnt 2 r2q 10 default 0x10\n"
        "qdisc ingress ffff: dev br0 parent ffff:fff1 ----------------\n"
        "qdisc ingress ffff: dev wlan0 parent ffff:fff1 ----------------\n"
    )
    assert parse_shaping_interfaces(output) == ["br0", "wlan0"]


@pytest.mark.asyncio
async def test_apply_allow_checks_before_inserting():
    runner = ScriptedRunner({
        ("iptables", "-t", "filter", "-C"): (1, ""),
        ("iptables", "-t", "nat", "-C"): (0, ""),
    })
    shell = ShellCommandExecutor(runner=runner)

    await shell.apply_allow(MAC_A1, IP_A1)

    inserts = [call for call in runner.calls if "-I" in call]
    assert inserts == [[
        "iptables", "-t", "filter", "-I", "FORWARD", "1",
        "-s", IP_A1, "-m", "mac", "--mac-source", MAC_A1,
        "-m", "comment", "--comment", "hotspot-allow", "-j", "ACCEPT"
    ]]


@pytest.mark.asyncio
async def test_apply_shaping_creates_root_once_and_uses_replace():
    runner = ScriptedRunner({("tc", "qdisc", "show"): (0, "")})
    shell = ShellCommandExecutor(runner=runner)

    await shell.apply_shaping("br0", IP_A1, 10, 5)

    commands = [" ".join(call) for call in runner.calls]
    assert "tc qdisc replace dev br0 root handle 1: htb default 10" in commands
    assert "tc class replace dev br0 parent 1: classid 1:1018 htb rate 10mbit ceil 10mbit" in commands
    assert (
        "tc filter replace dev br0 parent 1: protocol ip prio 1 handle 800::18 u32 "
        "match ip dst 10.0.0.23/32 flowid 1:1018"
    ) in commands
    assert any(c.startswith("tc filter replace dev br0 parent ffff:") and "police rate 5mbit" in c for c in commands)


@pytest.mark.asyncio
async def test_apply_shaping_keeps_existing_root():
    runner = ScriptedRunner({
        ("tc", "qdisc", "show"): (0, "qdisc htb 1: root refcnt 2\nqdisc ingress ffff: parent ffff:fff1\n")
    })
    shell = ShellCommandExecutor(runner=runner)

    await shell.apply_shaping("br0", IP_A1, 10, 0)

    commands = [" ".join(call) for call in runner.calls]
    assert not any("root handle 1:" in c for c in commands)
    assert any(c.startswith("tc filter del dev br0 parent ffff:") for c in commands)


@pytest.mark.asyncio
async def test_missing_tool_raises_enforcement_failure():
    from hotspot.exceptions import EnforcementFailure

    shell = ShellCommandExecutor(runner=ScriptedRunner({("iptables",): (127, "")}))

    with pytest.raises(EnforcementFailure):
        await shell.apply_allow(MAC_A1, IP_A1)


@pytest.mark.asyncio
async def test_interface_for_uses_route_lookup_with_fallback():
    route = json.dumps([{"dst": IP_B2, "dev": "wlan0", "prefsrc": "10.0.0.1"}])
    shell = ShellCommandExecutor(lan_interface="br0", runner=ScriptedRunner({("ip", "-j", "route"): (0, route)}))
    assert await shell.interface_for(IP_B2) == "wlan0"

    failing = ShellCommandExecutor(lan_interface="br0", runner=ScriptedRunner({("ip",): (2, "")}))
    assert await failing.interface_for(IP_B2) == "br0"


@pytest.mark.asyncio
async def test_dry_run_never_invokes_runner():
    runner = ScriptedRunner()
    shell = ShellCommandExecutor(runner=runner, dry_run=True)

    await shell.apply_allow(MAC_A1, IP_A1)
    await shell.revoke_shaping("br0", IP_A1)

    assert runner.calls == []


@pytest.mark.asyncio
async def test_initialize_firewall_redirects_each_hotspot_interface():
    runner = ScriptedRunner()
    shell = ShellCommandExecutor(runner=runner)

    await shell.initialize_firewall("eth0", 8000, ["br0", "wlan0"])

    commands = [" ".join(call) for call in runner.calls]
    assert commands.index("iptables -F") < commands.index("iptables -P FORWARD DROP")
    assert "iptables -t nat -A POSTROUTING -o eth0 -j MASQUERADE" in commands
    for interface in ("br0", "wlan0"):
        assert (
            f"iptables -t nat -A PREROUTING -i {interface} -p tcp --dport 80 "
            f"-j REDIRECT --to-ports 8000"
        ) in commands


@pytest.mark.asyncio
async def test_baseline_failure_is_reported(executor):
    executor.fail.add("initialize_firewall")
    assert await EnforcementService(executor).initialize_baseline("eth0", 8000, ["br0"]) is False

    executor.fail.clear()
    assert await EnforcementService(executor).initialize_baseline("eth0", 8000, ["br0"]) is True
    assert executor.firewall[-1] == {"wan": "eth0", "port": 8000, "hotspots": ["br0"]}
