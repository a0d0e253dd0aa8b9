import pytest
from Crypto.Cipher import AES, DES, DES3
from Crypto.Hash import CMAC

from mifaresam.errors import ResponseError
from mifaresam.samav2.sam import (
    SamAv2,
    apdu_dump_secret_key,
    apdu_dump_session_key,
    apdu_get_version,
    apdu_kill_auth_picc,
    apdu_lock_unlock,
    apdu_lock_unlock_part2,
    apdu_non_x_auth_mfp_first,
    apdu_non_x_auth_mfp_second,
    connect_sam,
)

SW_OK = b"\x90\x00"
SW_MORE = b"\x90\xAF"
SW_FAIL = b"\x69\x82"

AES_KEY = bytes(16)
RND2 = bytes(range(12))
RND1 = bytes(range(0x30, 0x3C))
RND_A = bytes(range(0x20, 0x30))
RND_B = bytes(range(0x40, 0x50))


class ScriptedCard:
    def __init__(self, responses=()):
        self.responses = list(responses)
        self.sent = []
        self.disconnected = False

    def apdu(self, data):
        self.sent.append(bytes(data))
        return self.responses.pop(0)

    def atr(self):
        return b"\x3B\x00"

    def disconnect(self):
        self.disconnected = True


class Av2Simulator:
    """SAM side of the three-pass AES authentication."""

    def __init__(self, key, mode):
        self.key = key
        self.mode = mode
        self.sent = []
        self.kex = None
        self.rnd_a = None

    def apdu(self, data):
        self.sent.append(bytes(data))
        step = len(self.sent)
        if step == 1:
            return RND2 + SW_MORE
        if step == 2:
            mac, rnd1 = data[5:13], data[13:25]
            expected = CMAC.new(
                self.key, msg=RND2 + bytes((self.mode,)) + bytes(3), ciphermod=AES
            ).digest()[1::2]
            if mac != expected:
                return SW_FAIL
            div = rnd1[7:12] + RND2[7:12] + bytes(a ^ b for a, b in zip(rnd1[:5], RND2[:5])) + b"\x91"
            self.kex = AES.new(self.key, AES.MODE_ECB).encrypt(div)
            return bytes(8) + AES.new(self.kex, AES.MODE_ECB).encrypt(RND_B) + SW_MORE
        plain = AES.new(self.kex, AES.MODE_CBC, iv=bytes(16)).decrypt(data[5:37])
        if plain[16:] != RND_B[2:] + RND_B[:2]:
            return SW_FAIL
        self.rnd_a = plain[:16]
        return SW_OK

    def atr(self):
        return b""

    def disconnect(self):
        pass


def fixed_random(*chunks):
    pending = list(chunks)

    def produce(n):
        chunk = pending.pop(0)
        assert len(chunk) == n
        return chunk

    return produce


def av2_sam(key, mode):
    simulator = Av2Simulator(key, mode)
    return SamAv2(simulator, random_bytes=fixed_random(RND1, RND_A)), simulator


def test_fixed_command_frames():
    assert apdu_get_version() == bytes((0x80, 0x60, 0x00, 0x00, 0x00))
    assert apdu_dump_session_key() == bytes((0x80, 0xD5, 0x00, 0x00, 0x00))
    assert apdu_kill_auth_picc() == bytes((0x80, 0xCA, 0x01, 0x00))


def test_lock_unlock_switch_mode_frame():
    assert apdu_lock_unlock(5, 1, 9, 9, 0x03) == bytes((0x80, 0x10, 0x03, 0x00, 0x05, 5, 1, 0, 0, 0, 0))


def test_lock_unlock_other_modes_carry_unlock_key():
    apdu = apdu_lock_unlock(5, 1, 7, 2, 0x00)
    assert apdu[4] == len(apdu) - 6
    assert apdu[-3:] == bytes((7, 2, 0))


def test_lock_unlock_part2_layout():
    mac = bytes(range(8))
    rnd = bytes(range(12))
    apdu = apdu_lock_unlock_part2(mac, rnd)
    assert apdu[:4] == bytes((0x80, 0x10, 0x00, 0x00))
    assert apdu[4] == len(mac) + len(rnd)
    assert apdu[5:-1] == mac + rnd


def test_non_x_auth_first_layout():
    data = bytes(range(16))
    div = bytes((1, 2, 3, 4))
    apdu = apdu_non_x_auth_mfp_first(True, 0, 3, 1, data, div)
    assert apdu[:2] == bytes((0x80, 0xA3))
    assert apdu[4] == len(apdu) - 6
    assert apdu[5:7] == bytes((3, 1))
    assert apdu[7:23] == data
    assert apdu[23:] == div + b"\x00"


def test_non_x_auth_first_p1_flags_add_up():
    data = bytes(16)
    base = apdu_non_x_auth_mfp_first(True, 0, 0, 0, data, None)[2]
    with_div = apdu_non_x_auth_mfp_first(True, 0, 0, 0, data, b"\x01")[2]
    later = apdu_non_x_auth_mfp_first(False, 0, 0, 0, data, None)[2]
    level2 = apdu_non_x_auth_mfp_first(True, 2, 0, 0, data, None)[2]
    assert base == 0
    assert with_div - base == 1
    assert later - base == 2
    assert level2 - base == 4


def test_non_x_auth_second_layout():
    data = bytes(range(32))
    apdu = apdu_non_x_auth_mfp_second(data)
    assert apdu[:4] == bytes((0x80, 0xA3, 0x00, 0x00))
    assert apdu[4] == len(data)
    assert apdu[5:-1] == data
    assert apdu[-1] == 0


def test_dump_secret_key_with_and_without_diversification():
    plain = apdu_dump_secret_key(4, 2, None)
    assert plain[:3] == bytes((0x80, 0xD6, 0x00))
    assert plain[4:] == bytes((2, 4, 2, 0))
    div = bytes((0xAA, 0xBB, 0xCC))
    diversified = apdu_dump_secret_key(4, 2, div)
    assert diversified[4] == 2 + len(div)
    assert diversified[2] != plain[2]
    assert diversified[-4:-1] == div


def test_connect_sam_uses_sam_card_and_forwards():
    card = ScriptedCard([b"\x01\x02" + SW_OK])

    class Reader:
        def connect_card(self):
            raise AssertionError("unexpected")

        def connect_sam_card(self):
            return card

    sam = connect_sam(Reader())
    assert sam.get_version() == b"\x01\x02" + SW_OK
    assert card.sent == [apdu_get_version()]
    assert sam.atr() == b"\x3B\x00"
    with sam:
        pass
    assert card.disconnected


def test_uid_from_version_and_cached():
    version = bytes(range(28))
    card = ScriptedCard([version])
    sam = SamAv2(card)
    assert sam.uid() == version[14:21]
    sam.uuid = b"\x07" * 7
    assert sam.uid() == b"\x07" * 7
    assert len(card.sent) == 1


def test_uid_short_version_raises():
    sam = SamAv2(ScriptedCard([b"\x01" * 10]))
    with pytest.raises(ResponseError):
        sam.uid()


def test_dump_session_key_checks_status():
    good = SamAv2(ScriptedCard([b"\x11" * 40 + SW_OK]))
    assert good.dump_session_key() == b"\x11" * 40 + SW_OK
    bad = SamAv2(ScriptedCard([SW_FAIL]))
    with pytest.raises(ResponseError):
        bad.dump_session_key()


def test_non_x_auth_returns_raw_response():
    card = ScriptedCard([SW_FAIL])
    sam = SamAv2(card)
    assert sam.non_x_auth_mfp_second(b"\x01\x02") == SW_FAIL
    assert card.sent == [apdu_non_x_auth_mfp_second(b"\x01\x02")]


def test_auth_host_av2_plain_agrees_with_sam():
    sam, simulator = av2_sam(AES_KEY, 0)
    assert sam.auth_host_av2(AES_KEY, 1, 0, 0) == SW_OK
    assert sam.kex == simulator.kex
    assert simulator.rnd_a == RND_A
    assert simulator.sent[0][5:8] == bytes((1, 0, 0))
    assert sam.km == b""
    assert sam.cmd_ctr == 0


def test_auth_host_av2_full_derives_session_keys():
    sam, simulator = av2_sam(AES_KEY, 2)
    assert sam.auth_host_av2(AES_KEY, 1, 0, 2) == SW_OK
    assert sam.host_mode == 2
    assert sam.kx == AES_KEY
    sv2 = AES.new(AES_KEY, AES.MODE_ECB).decrypt(sam.km)
    assert sv2[-1] == 0x82
    assert sv2[:5] == RND_A[7:12]
    assert sv2[5:10] == RND_B[7:12]
    sv1 = AES.new(AES_KEY, AES.MODE_ECB).decrypt(sam.ke)
    assert sv1[-1] == 0x81
    assert sv1[:5] == RND_A[11:16]
    assert sv1[5:10] == RND_B[11:16]


def test_auth_host_av2_wrong_key_rejected():
    sam, _ = av2_sam(bytes(range(16)), 0)
    with pytest.raises(ResponseError):
        sam.auth_host_av2(AES_KEY, 1, 0, 0)


def test_auth_host_av2_invalid_host_mode():
    card = ScriptedCard()
    sam = SamAv2(card)
    with pytest.raises(ValueError):
        sam.auth_host_av2(AES_KEY, 1, 0, 4)
    assert card.sent == []


def test_auth_host_av2_requires_more_frames():
    sam = SamAv2(ScriptedCard([RND2 + SW_OK]))
    with pytest.raises(ResponseError):
        sam.auth_host_av2(AES_KEY, 1, 0, 0)


def test_switch_to_av2_runs_lock_unlock():
    sam, simulator = av2_sam(AES_KEY, 0x03)
    assert sam.switch_to_av2(AES_KEY, 5, 1) == SW_OK
    assert simulator.sent[0] == apdu_lock_unlock(5, 1, 0, 0, 0x03)
    assert simulator.sent[1][:2] == bytes((0x80, 0x10))
    assert sam.kex == simulator.kex


@pytest.mark.parametrize(
    "key, make_cipher",
    [
        (bytes(range(1, 9)), lambda k: DES.new(k, DES.MODE_CBC, iv=bytes(8))),
        (bytes(range(16)), lambda k: DES3.new(k, DES3.MODE_CBC, iv=bytes(8))),
    ],
)
def test_auth_host_av1_against_des_sam(key, make_cipher):
    rnd_b = bytes(range(0x50, 0x58))
    rnd_a = bytes(range(0x60, 0x68))
    state = {}

    class Av1Simulator:
        sent = []

        def apdu(self, data):
            self.sent.append(bytes(data))
            if len(self.sent) == 1:
                return make_cipher(key).encrypt(rnd_b) + SW_MORE
            plain = make_cipher(key).decrypt(data[5:21])
            if plain[8:] != rnd_b[1:] + rnd_b[:1]:
                return SW_FAIL
            state["rnd_a"] = plain[:8]
            return SW_OK

    simulator = Av1Simulator()
    sam = SamAv2(simulator, random_bytes=fixed_random(rnd_a))
    assert sam.auth_host_av1(key, 2, 1, 0) == SW_OK
    assert simulator.sent[0] == bytes((0x80, 0xA4, 0x00, 0x00, 0x02, 2, 1, 0x00))
    assert state["rnd_a"] == rnd_a
    assert sam.kex == rnd_a[:4] + rnd_b[:4]
    assert sam.cmd_ctr == 1


def test_auth_host_av1_rejects_bad_key_length():
    sam = SamAv2(ScriptedCard())
    with pytest.raises(ValueError):
        sam.auth_host_av1(bytes(5), 0, 0, 0)


def test_mixin_commands_go_through_card():
    card = ScriptedCard([b"\x01" * 12 + SW_OK])
    sam = SamAv2(card)
    assert sam.get_key_entry(5) == b"\x01" * 12 + SW_OK
    assert card.sent == [bytes((0x80, 0x64, 0x05, 0x00, 0x00))]