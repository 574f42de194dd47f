import copy
import pytest
import threading

from bip386.descriptors import Descriptor
from bip386.descriptors.spend_info import (
    SpendInfoCache,
    TaprootBuilder,
    TaprootBuilderError,
    TaprootSpendInfo,
)
from bip386.utils.script import CScript, OP_1, OP_CHECKSIG
from bip386.utils.taproot import tapbranch_hash, tapleaf_hash


INTERNAL = "cc8a4bc64d897bddc5fbc2f670f7a8ba0b386779106cf1223c6fc5d7cd6fc115"
PK_A = "30925c62aa5db756f2441f18372a22f99e84f3e1db754e4e8d1cf7ff9227556d"
PK_B = "1af85df7c89b9d7b8d7ed881c508df243895c37c2a4ef1a945374d468944da57"
PK_C = "af7453eeac1fc57201cd7813c722c06e12929d7be23c1c025d3afacf2e0b0cfa"
PK_D = "6cb7bbba9f9f455ddb3e5bd9ac2156dda063706105fe55c5eb0a8457fed32915"


def pk_script(key_hex):
    return CScript([bytes.fromhex(key_hex), OP_CHECKSIG])


def test_key_path_output():
    # Known vectors from the descriptors test suites of other implementations.
    for desc_str, spk_hex in [
        (
            "tr(a34b99f22c790c4e36b2b3c2c35a36db06226e41c692fc82b8b56ac1c540c5bd)#dh4fyxrd",
            "512077aab6e066f8a7419c5ab714c12c67d25007ed55a43cadcacb4d7a970a093f11",
        ),
        (
            "tr(02e20e746af365e86647826397ba1c0e0d5cb685752976fe2f326ab76bdc4d6ee9)#f7yg99rk",
            "51209c19294f03757da3dc235a5960631e3c55751632f5889b06b7a053bdc0bcfbcb",
        ),
    ]:
        desc = Descriptor.from_str(desc_str, strict=True)
        assert desc.script_pubkey.hex() == spk_hex
        assert str(desc) == desc_str
        info = desc.spend_info()
        assert info.merkle_root is None
        assert info.script_map == {}
        assert info.output_key == bytes.fromhex(spk_hex[4:])


def test_script_path_output_keys():
    # Checked against other implementations.
    for desc_str, output_key in [
        (
            f"tr({INTERNAL},pk({PK_B}))#dx2xu7f8",
            "49d60cd8db4481ba726e89d9925097949a313e009a6cd81549dcad410f5c69c2",
        ),
        (
            f"tr({INTERNAL},{{pk({PK_A}),pk({PK_B})}})#4cly7ykp",
            "364033633d10c0bb6af6515778b7245d615546197bfae4f9bceeda4cd55c06f9",
        ),
        (
            f"tr({INTERNAL},{{pk({PK_A}),{{pk({PK_B}),pk({PK_C})}}}})#ycrkgmjm",
            "3baf6fbd5fd8f853feb0bc06b43babcc11aa4583aa423f48047f1ada780a0a6b",
        ),
        (
            f"tr({INTERNAL},{{{{pk({PK_A}),pk({PK_B})}},pk({PK_C})}})#xtk7tcz0",
            "50858e1c2167b6860b8b1d602a7926e95f77e4e5741c8cb057f767cba69edc29",
        ),
        (
            f"tr({INTERNAL},{{{{pk({PK_A}),pk({PK_B})}},{{pk({PK_C}),pk({PK_D})}}}})#e59qvuzs",
            "00ca439c5b5eadfdb4c85353a5b76850d28c9ce410cf59f8b04afbc77a2ede6b",
        ),
    ]:
        desc = Descriptor.from_str(desc_str, strict=True)
        assert str(desc) == desc_str
        assert desc.output_key().hex() == output_key
        assert desc.script_pubkey == CScript([OP_1, bytes.fromhex(output_key)])


def test_control_blocks():
    desc = Descriptor.from_str(
        "tr(e6b631547001c2ca7c6cfb0637df5dcf23540567b7130b42a5560b9fa9f02922,{{{pk(6f3083e8d6e468fc5db3ec3301a259d73110b22310e0640c3b106fda8a5773cc),pkh(4228e97dbded4aab222af59b862cd36bc6756f21f55eadbbee8fb2a6c41a4561)},{pk(f2c463aeda45b31314a5fa8a98970647df2517f2b9786255d5c66dd3520e6b30),pk(fff4b58834e5ff31b2d9c30ec18b9e92de9c299484ce2a4e7ac6d8e3c0062571)}},{{pk(45455d3f915ac438c9405467bcf0fcf59d9cf4b25069fb7cef1ace3451c69e78),pk(541522cc80f357d28aa9d3883aacaa312310f915a3237ba52b8107ea33a6bbc6)},{pkh(b0e7f16f04d8fab675658197058f116eca2c3c1b162b8aafb90e066615c51f99),pkh(3ae686f1a11c6d54e99f450e52148a9c38209e9010165c125b0558490e0d766a)}}})#qhxcthy5",
        strict=True,
    )
    info = desc.spend_info()
    assert info.merkle_root.hex() == "f24b40c4a4790c55b26d306e64178047d3fb8322e8d0aefe0823be80b9c0a86b"
    assert info.output_key_parity == 1

    for key, control_block in [
        (
            "45455d3f915ac438c9405467bcf0fcf59d9cf4b25069fb7cef1ace3451c69e78",
            "c1e6b631547001c2ca7c6cfb0637df5dcf23540567b7130b42a5560b9fa9f02922482065cba2919aa9ca1c62f3943b3a091d82d154a89e15bcddc23f78ad9e62cd2a86719442ce543b69b84c6ccdb58eaab3f0a8803e1d48865a20067dac61d1d4795c638fed8e10481e4874ed3c676a8a51a42875bc1ba435c08fc92ab5027c56",
        ),
        (
            "6f3083e8d6e468fc5db3ec3301a259d73110b22310e0640c3b106fda8a5773cc",
            "c1e6b631547001c2ca7c6cfb0637df5dcf23540567b7130b42a5560b9fa9f02922da83bb9bdf7a5a3b0d45a5f811d90fb88495cc4c984ab1b60618a4012833e42782bbc5be7826c9493cfd897c3deea90f0a380b7610657bcdc66b3e0662048fe8a90d03ef4486e773622d8779920cc966db3b0ccbe439c2b86b5f7bb69c9d4ef8",
        ),
        (
            "fff4b58834e5ff31b2d9c30ec18b9e92de9c299484ce2a4e7ac6d8e3c0062571",
            "c1e6b631547001c2ca7c6cfb0637df5dcf23540567b7130b42a5560b9fa9f029220e456c80b89ca89d82b09b15464d4f9d157330ea8494193b623b9ce147939c8cc759e7319868d906769d5c29080f5bb195bc75c3f9a22436b6b1f903cb75ebc1a90d03ef4486e773622d8779920cc966db3b0ccbe439c2b86b5f7bb69c9d4ef8",
        ),
    ]:
        assert info.control_block(pk_script(key)).hex() == control_block

    assert info.control_block(pk_script(PK_A)) is None


def test_merkle_branches_commit_to_root():
    desc = Descriptor.from_str(f"tr({INTERNAL},{{pk({PK_A}),{{pk({PK_B}),pk({PK_C})}}}})")
    info = desc.spend_info()
    for depth, ms in desc.iter_scripts():
        control_block = info.control_block(ms.script)
        assert len(control_block) == 33 + 32 * depth
        assert control_block[0] & 0xFE == 0xC0
        assert control_block[1:33] == desc.internal_key.bytes()
        node = tapleaf_hash(ms.script)
        for i in range(depth):
            node = tapbranch_hash(node, control_block[33 + 32 * i : 65 + 32 * i])
        assert node == info.merkle_root


def test_duplicated_leaf_uses_shortest_proof():
    desc = Descriptor.from_str(f"tr({INTERNAL},{{pk({PK_A}),{{pk({PK_A}),pk({PK_B})}}}})")
    info = desc.spend_info()
    assert len(info.script_map[(bytes(pk_script(PK_A)), 0xC0)]) == 2
    assert len(info.control_block(pk_script(PK_A))) == 65
    assert len(info.control_block(pk_script(PK_B))) == 97


def test_builder():
    a, b, c = pk_script(PK_A), pk_script(PK_B), pk_script(PK_C)
    internal = bytes.fromhex(INTERNAL)

    info = TaprootBuilder().add_leaf(1, a).add_leaf(2, b).add_leaf(2, c).finalize(internal)
    desc = Descriptor.from_str(f"tr({INTERNAL},{{pk({PK_A}),{{pk({PK_B}),pk({PK_C})}}}})")
    assert info.merkle_root == desc.spend_info().merkle_root

    info = TaprootBuilder().add_leaf(0, a).finalize(internal)
    assert info.merkle_root == tapleaf_hash(a)
    assert info.control_block(a) == bytes([0xC0 | info.output_key_parity]) + internal

    assert TaprootSpendInfo.new_key_spend(internal).merkle_root is None

    with pytest.raises(TaprootBuilderError, match="depth"):
        TaprootBuilder().add_leaf(129, a)
    with pytest.raises(TaprootBuilderError, match="DFS"):
        TaprootBuilder().add_leaf(3, a).add_leaf(1, b)
    with pytest.raises(TaprootBuilderError, match="over complete"):
        TaprootBuilder().add_leaf(0, a).add_leaf(0, b)
    with pytest.raises(TaprootBuilderError, match="over complete"):
        TaprootBuilder().add_leaf(1, a).add_leaf(1, b).add_leaf(1, c).add_leaf(1, a)
    with pytest.raises(TaprootBuilderError, match="leaf version"):
        TaprootBuilder().add_leaf(0, a, leaf_version=0xC1)
    with pytest.raises(TaprootBuilderError, match="empty"):
        TaprootBuilder().finalize(internal)
    with pytest.raises(TaprootBuilderError, match="incomplete"):
        TaprootBuilder().add_leaf(1, a).finalize(internal)
    with pytest.raises(TaprootBuilderError, match="incomplete"):
        TaprootBuilder().add_leaf(1, a).add_leaf(2, b).finalize(internal)


def test_cache_computes_once():
    calls = []

    def compute():
        calls.append(None)
        return object()

    cache = SpendInfoCache(compute)
    assert cache.peek() is None
    value = cache.get()
    assert cache.get() is value and cache.peek() is value
    assert len(calls) == 1


def test_cache_failure_leaves_slot_empty():
    attempts = []

    def compute():
        attempts.append(None)
        if len(attempts) == 1:
            raise RuntimeError("transient")
        return "info"

    cache = SpendInfoCache(compute)
    with pytest.raises(RuntimeError):
        cache.get()
    assert cache.peek() is None
    assert cache.get() == "info"
    assert len(attempts) == 2


def test_cache_first_value_wins():
    # Both threads compute, as the lock isn't held during the computation, but
    # they all get the first stored value.
    barrier = threading.Barrier(2, timeout=10)

    def compute():
        barrier.wait()
        return object()

    cache = SpendInfoCache(compute)
    results = []

    def get():
        results.append(cache.get())

    threads = [threading.Thread(target=get) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 2
    assert results[0] is results[1] is cache.peek()


def test_cache_copy():
    cache = SpendInfoCache(object)
    clone = cache.copy()
    # Independent slots.
    value = clone.get()
    assert cache.peek() is None
    assert cache.get() is not value

    # A clone carries the value already computed.
    assert cache.copy().peek() is cache.peek()


def test_descriptor_copy(keys):
    desc = Descriptor.from_str(f"tr({keys['K']},pk({keys['A']}))")
    clone = copy.copy(desc)
    assert clone == desc and clone is not desc
    clone.spend_info()
    assert desc._spend_info.peek() is None

    info = desc.spend_info()
    assert desc.copy()._spend_info.peek() is info
    assert desc.copy().spend_info() is info
    assert clone.spend_info().output_key == info.output_key


def test_address(keys):
    desc = Descriptor.from_str(
        "tr(a34b99f22c790c4e36b2b3c2c35a36db06226e41c692fc82b8b56ac1c540c5bd)"
    )
    assert desc.address().startswith("bc1p")
    assert desc.address("test").startswith("tb1p")
    assert desc.address("signet").startswith("tb1p")
    assert desc.address("regtest").startswith("bcrt1p")
    assert len(desc.address()) == 62
    with pytest.raises(ValueError):
        desc.address("dogecoin")
