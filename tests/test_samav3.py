import pytest
from Crypto.Cipher import AES
from Crypto.Hash import CMAC

from mifaresam.errors import ResponseError
from mifaresam.samav3 import SamAv3, connect_sam_av3

SW_OK = b"\x90\x00"
SW_MORE = b"\x90\xAF"
SW_FAIL = b"\x69\x82"

AES_KEY = bytes(16)
RND2 = bytes(range(12))
RND1 = bytes(range(0x30, 0x3C))
RND_A = bytes(range(0x20, 0x30))
RND_B = bytes(range(0x40, 0x50))


class HostAuthSimulator:
    def __init__(self, key, mode):
        self.key = key
        self.mode = mode
        self.sent = []
        self.kex = None

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
        return SW_OK

    def atr(self):
        return b""

    def disconnect(self):
        pass


def randoms():
    pending = [RND1, RND_A]
    return lambda n: pending.pop(0)[:n]


def test_auth_host_uses_av2_protocol():
    simulator = HostAuthSimulator(AES_KEY, 1)
    sam = SamAv3(simulator, random_bytes=randoms())
    assert sam.auth_host(AES_KEY, 3, 0, 1) == SW_OK
    assert simulator.sent[0][:2] == bytes((0x80, 0xA4))
    assert sam.kex == simulator.kex
    assert sam.host_mode == 1
    assert len(sam.km) == 16


def test_auth_host_wrong_key_fails():
    simulator = HostAuthSimulator(bytes(range(16)), 0)
    sam = SamAv3(simulator, random_bytes=randoms())
    with pytest.raises(ResponseError):
        sam.auth_host(AES_KEY, 3, 0, 0)


def test_connect_sam_av3_forwards_commands():
    class Card:
        sent = []

        def apdu(self, data):
            self.sent.append(bytes(data))
            return b"\x04\x01" + SW_OK

        def atr(self):
            return b"\x3B"

        def disconnect(self):
            pass

    card = Card()

    class Reader:
        def connect_card(self):
            raise AssertionError("unexpected")

        def connect_sam_card(self):
            return card

    sam = connect_sam_av3(Reader())
    assert isinstance(sam, SamAv3)
    assert sam.get_version() == b"\x04\x01" + SW_OK
    assert card.sent == [bytes((0x80, 0x60, 0x00, 0x00, 0x00))]