"""
CONFIDENTIAL BALANCE TOKEN PROGRAM

Token accounts carry a public balance and, once reallocated and configured,
a confidential extension with two twisted-ElGamal slots:
  - pending:   credited by deposits and incoming transfers (homomorphic add)
  - available: spendable; changed only by apply_pending_balance or transfers

Work arrives as bundles. Instructions run in order against staged copies of
the touched records; nothing is written unless every instruction succeeds.
Proofs travel as sibling instructions located by a relative offset.

Assertion messages start with a stable code ("Code: detail").
"""

# -----------------------------------------------------------------------------
# Parameters & Helpers
# -----------------------------------------------------------------------------

p = 2**255 - 19  # group modulus
n = p - 1        # exponent modulus

U64_MAX = 2**64 - 1
NOTE_MODULUS = 2**64
ELEMENT_HEX = 64
CIPHERTEXT_HEX = 128
DECRYPTABLE_HEX = 96
HEX_CHARS = "0123456789abcdef"

AMOUNT_BIT_LENGTH = 64
LO_BITS = 16
HI_BITS = 32
SPLIT_FACTOR = 65536
RANGE_BIT_HEX = 5 * ELEMENT_HEX

ACCOUNT_BASE_SIZE = 165
CONFIDENTIAL_EXTENSION_SIZE = 299
ACCOUNT_STORAGE_OVERHEAD = 128
RENT_PER_BYTE = 6960
MAX_CHECKPOINT_AGE = 150
CONFIDENTIAL_EXTENSION = "confidential_transfer_account"

def sha3(s: str):
    return hashlib.sha3(s)

def map_to_base(tag: str):
    return int(sha3("ZKT:gen:" + tag)[:32], 16) % (p - 3) + 2

def mod_exp(base: int, exponent: int, modulus: int):
    if exponent == 0:
        return 1
    result = 1
    base = base % modulus
    while exponent > 0:
        if exponent % 2 == 1:
            result = (result * base) % modulus
        exponent = exponent >> 1
        base = (base * base) % modulus
    return result

def mod_inverse(x: int, modulus: int):
    # Fermat since p is prime and x assumed != 0 mod p
    return mod_exp(x, modulus - 2, modulus)

def exp_neg(base: int, exponent: int):
    return mod_exp(base, (n - exponent % n) % n, p)

def to_hex(x: int):
    s = hex(x)[2:]
    return "0" * (ELEMENT_HEX - len(s)) + s

def is_hex(s: str, length: int):
    if not isinstance(s, str) or len(s) != length:
        return False
    for ch in s:
        if ch not in HEX_CHARS:
            return False
    return True

def parse_element(s: str, code: str):
    assert is_hex(s, ELEMENT_HEX), code + ': malformed element'
    x = int(s, 16)
    assert 0 < x and x < p, code + ': element out of range'
    return x

def parse_scalar(s: str, code: str):
    assert is_hex(s, ELEMENT_HEX), code + ': malformed scalar'
    x = int(s, 16)
    assert x < n, code + ': scalar out of range'
    return x

def challenge(label: str, parts: list):
    transcript = "ZKT:v1|" + label
    for part in parts:
        transcript = transcript + "|" + part
    return int(sha3(transcript), 16) % n

g = map_to_base("g")
h = map_to_base("h")
assert g != h and g not in (1, p-1) and h not in (1, p-1), "Bad generators"
g_inv = mod_inverse(g, p)

ZERO_CIPHERTEXT = to_hex(1) + to_hex(1)

def split_ciphertext(s: str, code: str):
    assert is_hex(s, CIPHERTEXT_HEX), code + ': malformed ciphertext'
    return [parse_element(s[:ELEMENT_HEX], code), parse_element(s[ELEMENT_HEX:], code)]

def add_ciphertexts(a: str, b: str):
    x = split_ciphertext(a, 'InvalidInstruction')
    y = split_ciphertext(b, 'InvalidInstruction')
    return to_hex(x[0] * y[0] % p) + to_hex(x[1] * y[1] % p)

def sub_ciphertexts(a: str, b: str):
    x = split_ciphertext(a, 'InvalidInstruction')
    y = split_ciphertext(b, 'InvalidInstruction')
    return to_hex(x[0] * mod_inverse(y[0], p) % p) + to_hex(x[1] * mod_inverse(y[1], p) % p)

def rent_minimum(size: int):
    return (ACCOUNT_STORAGE_OVERHEAD + size) * RENT_PER_BYTE

def associated_address(owner: str, mint: str):
    return sha3("ZKT:associated|" + owner + "|" + mint)

def snapshot_digest(extension: dict):
    return sha3("ZKT:snapshot|" + extension['pending'] + "|" + extension['available'] + "|" + extension['decryptable_available'] + "|" + str(extension['pending_counter']))

def clone(value: Any):
    if isinstance(value, dict):
        out = {}
        for key in value:
            out[key] = clone(value[key])
        return out
    if isinstance(value, list):
        items = []
        for item in value:
            items.append(clone(item))
        return items
    return value

# -----------------------------------------------------------------------------
# State
# -----------------------------------------------------------------------------

# address -> {'owner', 'mint', 'public_balance', 'space', 'rent', 'extension'}
accounts = Hash(default_value=None)

# address -> {'authority', 'decimals', 'supply', 'confidential'}
mints = Hash(default_value=None)

# transaction signature -> {'height', 'checkpoint', 'instructions'}
processed = Hash(default_value=None)

# checkpoint hash -> height at which it was issued
checkpoints = Hash(default_value=None)

height = Variable()
latest_checkpoint = Variable()

BundleProcessedEvent = LogEvent('BundleProcessed', {
    'signature': {'type': str, 'idx': True},
    'height': {'type': int},
    'instructions': {'type': int}
})

# -----------------------------------------------------------------------------
# Construction
# -----------------------------------------------------------------------------

@construct
def seed():
    genesis = sha3("ZKT:checkpoint|genesis")
    height.set(0)
    latest_checkpoint.set(genesis)
    checkpoints[genesis] = 0

# -----------------------------------------------------------------------------
# Views
# -----------------------------------------------------------------------------

@export
def get_checkpoint():
    return latest_checkpoint.get()

@export
def get_account(address: str):
    return accounts[address]

@export
def get_mint(address: str):
    return mints[address]

@export
def get_transaction(signature: str):
    return processed[signature]

@export
def rent_exempt_minimum(size: int):
    return rent_minimum(size)

@export
def derive_account_address(owner: str, mint: str):
    return associated_address(owner, mint)

# -----------------------------------------------------------------------------
# Staging
# -----------------------------------------------------------------------------

def load_account(state: dict, address: str):
    if address in state['accounts']:
        return state['accounts'][address]
    record = accounts[address]
    if record is None:
        return None
    record = clone(record)
    state['accounts'][address] = record
    return record

def load_mint(state: dict, address: str):
    if address in state['mints']:
        return state['mints'][address]
    record = mints[address]
    if record is None:
        return None
    record = clone(record)
    state['mints'][address] = record
    return record

def configured_account(state: dict, address: str):
    record = load_account(state, address)
    assert record is not None, 'NotConfigurable: account ' + str(address) + ' does not exist'
    assert record['extension'] is not None, 'NotConfigurable: account ' + address + ' is not configured'
    return record

def check_amount(amount: Any):
    assert isinstance(amount, int) and not isinstance(amount, bool), 'InvalidAmount: amount must be an integer'
    assert 0 < amount and amount <= U64_MAX, 'InvalidAmount: amount out of range'

def proof_context(instructions: list, index: int, offset: Any, kind: str):
    assert isinstance(offset, int) and offset != 0, 'ProofVerificationFailed: bad proof offset'
    target = index + offset
    assert 0 <= target and target < len(instructions), 'ProofVerificationFailed: proof offset outside bundle'
    sibling = instructions[target]
    assert isinstance(sibling, dict) and sibling.get('kind') == kind, 'ProofVerificationFailed: instruction at offset is not ' + kind
    return sibling['context']

# -----------------------------------------------------------------------------
# Proof verification
# -----------------------------------------------------------------------------

def verify_pubkey_validity(ix: dict):
    code = 'ProofVerificationFailed'
    pubkey_hex = ix['context']['pubkey']
    pubkey = parse_element(pubkey_hex, code)
    blob = ix['proof']
    assert is_hex(blob, 2 * ELEMENT_HEX), code + ': malformed pubkey validity proof'
    commitment = parse_element(blob[:64], code)
    response = parse_scalar(blob[64:], code)
    c = challenge('pubkey-validity', [pubkey_hex, blob[:64]])
    assert mod_exp(h, response, p) == commitment * mod_exp(pubkey, c, p) % p, code + ': pubkey validity'

def verify_grouped_ciphertext_validity(ix: dict):
    code = 'ProofVerificationFailed'
    ctx = ix['context']
    source_pubkey = parse_element(ctx['source_pubkey'], code)
    destination_pubkey = parse_element(ctx['destination_pubkey'], code)
    commitment = parse_element(ctx['commitment'], code)
    source_handle = parse_element(ctx['source_handle'], code)
    destination_handle = parse_element(ctx['destination_handle'], code)
    blob = ix['proof']
    assert is_hex(blob, 5 * ELEMENT_HEX), code + ': malformed ciphertext validity proof'
    t_commitment = parse_element(blob[0:64], code)
    t_source = parse_element(blob[64:128], code)
    t_destination = parse_element(blob[128:192], code)
    z_amount = parse_scalar(blob[192:256], code)
    z_opening = parse_scalar(blob[256:320], code)
    c = challenge('grouped-ciphertext-validity', [
        ctx['source_pubkey'], ctx['destination_pubkey'], ctx['commitment'],
        ctx['source_handle'], ctx['destination_handle'],
        blob[0:64], blob[64:128], blob[128:192]
    ])
    lhs = mod_exp(g, z_amount, p) * mod_exp(h, z_opening, p) % p
    assert lhs == t_commitment * mod_exp(commitment, c, p) % p, code + ': ciphertext validity (commitment)'
    assert mod_exp(source_pubkey, z_opening, p) == t_source * mod_exp(source_handle, c, p) % p, code + ': ciphertext validity (source handle)'
    assert mod_exp(destination_pubkey, z_opening, p) == t_destination * mod_exp(destination_handle, c, p) % p, code + ': ciphertext validity (destination handle)'

def verify_ciphertext_commitment_equality(ix: dict):
    code = 'ProofVerificationFailed'
    ctx = ix['context']
    pubkey = parse_element(ctx['pubkey'], code)
    ciphertext = split_ciphertext(ctx['ciphertext'], code)
    commitment = parse_element(ctx['commitment'], code)
    blob = ix['proof']
    assert is_hex(blob, 6 * ELEMENT_HEX), code + ': malformed equality proof'
    y_pubkey = parse_element(blob[0:64], code)
    y_ciphertext = parse_element(blob[64:128], code)
    y_commitment = parse_element(blob[128:192], code)
    z_exponent = parse_scalar(blob[192:256], code)
    z_amount = parse_scalar(blob[256:320], code)
    z_opening = parse_scalar(blob[320:384], code)
    c = challenge('ciphertext-commitment-equality', [
        ctx['pubkey'], ctx['ciphertext'], ctx['commitment'],
        blob[0:64], blob[64:128], blob[128:192]
    ])
    g_amount = mod_exp(g, z_amount, p)
    assert mod_exp(pubkey, z_exponent, p) == y_pubkey * mod_exp(h, c, p) % p, code + ': equality (key)'
    assert g_amount * mod_exp(ciphertext[1], z_exponent, p) % p == y_ciphertext * mod_exp(ciphertext[0], c, p) % p, code + ': equality (ciphertext)'
    assert g_amount * mod_exp(h, z_opening, p) % p == y_commitment * mod_exp(commitment, c, p) % p, code + ': equality (commitment)'

def verify_range_bit(commitment_hex: str, index: int, chunk: str):
    code = 'ProofVerificationFailed'
    bit_commitment = parse_element(chunk[0:64], code)
    c0 = parse_scalar(chunk[64:128], code)
    c1 = parse_scalar(chunk[128:192], code)
    z0 = parse_scalar(chunk[192:256], code)
    z1 = parse_scalar(chunk[256:320], code)
    t0 = mod_exp(h, z0, p) * exp_neg(bit_commitment, c0) % p
    t1 = mod_exp(h, z1, p) * exp_neg(bit_commitment * g_inv % p, c1) % p
    c = challenge('range-bit', [commitment_hex, str(index), chunk[0:64], to_hex(t0), to_hex(t1)])
    assert (c0 + c1) % n == c, code + ': range bit ' + str(index)
    return bit_commitment

def verify_batched_range_proof(ix: dict):
    code = 'ProofVerificationFailed'
    ctx = ix['context']
    commitments = ctx['commitments']
    bit_lengths = ctx['bit_lengths']
    assert isinstance(commitments, list) and isinstance(bit_lengths, list), code + ': malformed range context'
    assert len(commitments) > 0 and len(commitments) == len(bit_lengths), code + ': malformed range context'
    total = 0
    for bit_length in bit_lengths:
        assert isinstance(bit_length, int) and 0 < bit_length and bit_length <= AMOUNT_BIT_LENGTH, code + ': bad range bit length'
        total = total + bit_length
    blob = ix['proof']
    assert is_hex(blob, total * RANGE_BIT_HEX), code + ': malformed range proof'
    offset = 0
    position = 0
    for commitment_hex in commitments:
        commitment = parse_element(commitment_hex, code)
        bit_commitments = []
        for index in range(bit_lengths[position]):
            chunk = blob[offset:offset + RANGE_BIT_HEX]
            bit_commitments.append(verify_range_bit(commitment_hex, index, chunk))
            offset = offset + RANGE_BIT_HEX
        acc = 1
        for index in range(len(bit_commitments) - 1, -1, -1):
            acc = acc * acc % p * bit_commitments[index] % p
        assert acc == commitment, code + ': bit commitments do not recombine'
        position = position + 1

# -----------------------------------------------------------------------------
# Instructions
# -----------------------------------------------------------------------------

def create_mint(state: dict, ix: dict, caller: str):
    mint = ix['mint']
    assert ix['authority'] == caller, 'Unauthorized: mint authority must sign'
    assert load_mint(state, mint) is None, 'AccountAlreadyExists: mint ' + mint
    decimals = ix['decimals']
    assert isinstance(decimals, int) and 0 <= decimals and decimals <= 18, 'InvalidInstruction: bad decimals'
    confidential = None
    if ix.get('confidential'):
        confidential = {
            'authority': ix.get('confidential_authority') or ix['authority'],
            'auto_approve': bool(ix.get('auto_approve'))
        }
    state['mints'][mint] = {
        'authority': ix['authority'],
        'decimals': decimals,
        'supply': 0,
        'confidential': confidential
    }

def mint_to(state: dict, ix: dict, caller: str):
    mint = load_mint(state, ix['mint'])
    assert mint is not None, 'AccountNotFound: mint ' + ix['mint']
    assert mint['authority'] == caller, 'Unauthorized: only the mint authority can mint'
    record = load_account(state, ix['account'])
    assert record is not None, 'AccountNotFound: account ' + ix['account']
    assert record['mint'] == ix['mint'], 'InvalidInstruction: account belongs to another mint'
    amount = ix['amount']
    check_amount(amount)
    assert mint['supply'] + amount <= U64_MAX, 'InvalidAmount: supply overflow'
    mint['supply'] = mint['supply'] + amount
    record['public_balance'] = record['public_balance'] + amount

def create_account(state: dict, ix: dict, caller: str):
    address = ix['account']
    assert ix['payer'] == caller, 'Unauthorized: payer must sign'
    assert load_mint(state, ix['mint']) is not None, 'AccountNotFound: mint ' + ix['mint']
    assert address == associated_address(ix['owner'], ix['mint']), 'InvalidAccountAddress: ' + address
    assert load_account(state, address) is None, 'AccountAlreadyExists: ' + address
    assert ix['rent'] >= rent_minimum(ACCOUNT_BASE_SIZE), 'InsufficientRent: account is not rent exempt'
    state['accounts'][address] = {
        'owner': ix['owner'],
        'mint': ix['mint'],
        'public_balance': 0,
        'space': ACCOUNT_BASE_SIZE,
        'rent': ix['rent'],
        'extension': None
    }

def reallocate(state: dict, ix: dict, caller: str):
    record = load_account(state, ix['account'])
    assert record is not None, 'AccountNotFound: account ' + ix['account']
    assert record['owner'] == caller, 'Unauthorized: account owner must sign'
    space = ACCOUNT_BASE_SIZE
    for extension in ix['extensions']:
        assert extension == CONFIDENTIAL_EXTENSION, 'InvalidInstruction: unknown extension ' + str(extension)
        space = space + CONFIDENTIAL_EXTENSION_SIZE
    if record['space'] >= space:
        return
    assert record['rent'] + ix['rent'] >= rent_minimum(space), 'InsufficientRent: reallocation is not rent exempt'
    record['space'] = space
    record['rent'] = record['rent'] + ix['rent']

def configure_account(state: dict, instructions: list, index: int, caller: str):
    ix = instructions[index]
    address = ix['account']
    record = load_account(state, address)
    assert record is not None, 'NotConfigurable: account ' + address + ' does not exist'
    assert record['owner'] == caller, 'Unauthorized: account owner must sign'
    assert record['mint'] == ix['mint'], 'NotConfigurable: account belongs to another mint'
    assert record['extension'] is None, 'NotConfigurable: account already configured'
    assert record['space'] >= ACCOUNT_BASE_SIZE + CONFIDENTIAL_EXTENSION_SIZE, 'NotConfigurable: account lacks space for the confidential extension'
    mint = load_mint(state, record['mint'])
    assert mint['confidential'] is not None, 'NotConfigurable: mint does not allow confidential transfers'
    parse_element(ix['pubkey'], 'NotConfigurable')
    assert is_hex(ix['decryptable_zero_balance'], DECRYPTABLE_HEX), 'NotConfigurable: malformed decryptable balance'
    max_credits = ix['max_pending_credits']
    assert isinstance(max_credits, int) and max_credits > 0, 'NotConfigurable: bad max_pending_credits'
    ctx = proof_context(instructions, index, ix['proof_offset'], 'verify_pubkey_validity')
    assert ctx['pubkey'] == ix['pubkey'], 'ProofVerificationFailed: validity proof is for a different key'
    record['extension'] = {
        'pubkey': ix['pubkey'],
        'approved': mint['confidential']['auto_approve'],
        'pending': ZERO_CIPHERTEXT,
        'available': ZERO_CIPHERTEXT,
        'decryptable_available': ix['decryptable_zero_balance'],
        'pending_counter': 0,
        'max_pending_credits': max_credits,
        'pending_notes': []
    }

def approve_account(state: dict, ix: dict, caller: str):
    record = configured_account(state, ix['account'])
    mint = load_mint(state, record['mint'])
    assert mint['confidential']['authority'] == caller, 'Unauthorized: only the confidential authority can approve'
    record['extension']['approved'] = True

def credit_pending(extension: dict, ciphertext: str, note: dict):
    assert extension['pending_counter'] + 1 <= extension['max_pending_credits'], 'PendingCreditCounterExceeded: apply the pending balance first'
    extension['pending'] = add_ciphertexts(extension['pending'], ciphertext)
    extension['pending_counter'] = extension['pending_counter'] + 1
    extension['pending_notes'].append(note)

def deposit(state: dict, ix: dict, caller: str):
    record = configured_account(state, ix['account'])
    extension = record['extension']
    assert extension['approved'], 'AccountNotApproved: ' + ix['account']
    source_address = ix.get('source') or ix['account']
    source = load_account(state, source_address)
    assert source is not None, 'AccountNotFound: account ' + source_address
    assert source['owner'] == caller, 'Unauthorized: source owner must sign'
    assert source['mint'] == record['mint'], 'InvalidInstruction: source belongs to another mint'
    amount = ix['amount']
    check_amount(amount)
    mint = load_mint(state, record['mint'])
    assert ix['decimals'] == mint['decimals'], 'InvalidInstruction: decimals mismatch'
    assert source['public_balance'] >= amount, 'InsufficientPublicBalance: ' + str(source['public_balance']) + ' < ' + str(amount)
    credit_pending(extension, to_hex(mod_exp(g, amount, p)) + to_hex(1), {'amount': amount})
    source['public_balance'] = source['public_balance'] - amount

def apply_pending_balance(state: dict, ix: dict, caller: str):
    record = configured_account(state, ix['account'])
    assert record['owner'] == caller, 'Unauthorized: account owner must sign'
    extension = record['extension']
    assert ix['expected_snapshot_digest'] == snapshot_digest(extension), 'StalePendingBalance: account balances changed since they were read'
    assert is_hex(ix['new_decryptable_available'], DECRYPTABLE_HEX), 'InvalidInstruction: malformed decryptable balance'
    extension['available'] = add_ciphertexts(extension['available'], extension['pending'])
    extension['pending'] = ZERO_CIPHERTEXT
    extension['pending_counter'] = 0
    extension['pending_notes'] = []
    extension['decryptable_available'] = ix['new_decryptable_available']

def transfer_half(instructions: list, index: int, half: str, src: dict, dst: dict):
    ix = instructions[index]
    commitment = parse_element(ix[half + '_commitment'], 'InvalidInstruction')
    source_handle = parse_element(ix[half + '_source_handle'], 'InvalidInstruction')
    destination_handle = parse_element(ix[half + '_destination_handle'], 'InvalidInstruction')
    validity = proof_context(instructions, index, ix[half + '_validity_proof_offset'], 'verify_grouped_ciphertext_validity')
    assert validity['source_pubkey'] == src['pubkey'], 'ProofVerificationFailed: ciphertext validity source key mismatch'
    assert validity['destination_pubkey'] == dst['pubkey'], 'ProofVerificationFailed: ciphertext validity destination key mismatch'
    assert validity['commitment'] == ix[half + '_commitment'], 'ProofVerificationFailed: ciphertext validity commitment mismatch'
    assert validity['source_handle'] == ix[half + '_source_handle'], 'ProofVerificationFailed: ciphertext validity handle mismatch'
    assert validity['destination_handle'] == ix[half + '_destination_handle'], 'ProofVerificationFailed: ciphertext validity handle mismatch'
    return [commitment, source_handle, destination_handle]

def transfer(state: dict, instructions: list, index: int, caller: str):
    ix = instructions[index]
    assert ix['account'] != ix['destination'], 'InvalidInstruction: cannot transfer to self'
    source = configured_account(state, ix['account'])
    destination = configured_account(state, ix['destination'])
    assert source['owner'] == caller, 'Unauthorized: source owner must sign'
    assert source['mint'] == destination['mint'], 'InvalidInstruction: accounts belong to different mints'
    src = source['extension']
    dst = destination['extension']
    assert src['approved'], 'AccountNotApproved: ' + ix['account']
    assert dst['approved'], 'AccountNotApproved: ' + ix['destination']
    assert is_hex(ix['new_decryptable_available'], DECRYPTABLE_HEX), 'InvalidInstruction: malformed decryptable balance'
    note = ix['note']
    assert isinstance(note, int) and 0 <= note and note < NOTE_MODULUS, 'InvalidInstruction: malformed note'

    # amount = lo + hi * 2^16
    lo = transfer_half(instructions, index, 'lo', src, dst)
    hi = transfer_half(instructions, index, 'hi', src, dst)
    commitment = lo[0] * mod_exp(hi[0], SPLIT_FACTOR, p) % p
    source_handle = lo[1] * mod_exp(hi[1], SPLIT_FACTOR, p) % p
    destination_handle = lo[2] * mod_exp(hi[2], SPLIT_FACTOR, p) % p

    new_available = sub_ciphertexts(src['available'], to_hex(commitment) + to_hex(source_handle))
    equality = proof_context(instructions, index, ix['equality_proof_offset'], 'verify_ciphertext_commitment_equality')
    assert equality['pubkey'] == src['pubkey'], 'ProofVerificationFailed: equality proof key mismatch'
    assert equality['ciphertext'] == new_available, 'ProofVerificationFailed: equality proof does not match the new available balance'

    ranges = proof_context(instructions, index, ix['range_proof_offset'], 'verify_batched_range_proof')
    assert ranges['commitments'] == [ix['lo_commitment'], ix['hi_commitment'], equality['commitment']], 'ProofVerificationFailed: range proof must cover both amount halves and the remaining balance'
    assert ranges['bit_lengths'] == [LO_BITS, HI_BITS, AMOUNT_BIT_LENGTH], 'ProofVerificationFailed: range proof bit lengths mismatch'

    credit_pending(dst, to_hex(commitment) + to_hex(destination_handle), {
        'lo': ix['lo_commitment'] + ix['lo_destination_handle'],
        'hi': ix['hi_commitment'] + ix['hi_destination_handle'],
        'note': note
    })
    src['available'] = new_available
    src['decryptable_available'] = ix['new_decryptable_available']

def execute(state: dict, instructions: list, index: int, caller: str):
    ix = instructions[index]
    assert isinstance(ix, dict), 'InvalidInstruction: instruction ' + str(index) + ' is not a mapping'
    kind = ix.get('kind')
    if kind == 'create_mint':
        create_mint(state, ix, caller)
    elif kind == 'mint_to':
        mint_to(state, ix, caller)
    elif kind == 'create_account':
        create_account(state, ix, caller)
    elif kind == 'reallocate':
        reallocate(state, ix, caller)
    elif kind == 'configure_account':
        configure_account(state, instructions, index, caller)
    elif kind == 'approve_account':
        approve_account(state, ix, caller)
    elif kind == 'deposit':
        deposit(state, ix, caller)
    elif kind == 'apply_pending_balance':
        apply_pending_balance(state, ix, caller)
    elif kind == 'transfer':
        transfer(state, instructions, index, caller)
    elif kind == 'verify_pubkey_validity':
        verify_pubkey_validity(ix)
    elif kind == 'verify_grouped_ciphertext_validity':
        verify_grouped_ciphertext_validity(ix)
    elif kind == 'verify_ciphertext_commitment_equality':
        verify_ciphertext_commitment_equality(ix)
    elif kind == 'verify_batched_range_proof':
        verify_batched_range_proof(ix)
    else:
        assert False, 'InvalidInstruction: unknown kind ' + str(kind)

# -----------------------------------------------------------------------------
# Core: atomic bundles
# -----------------------------------------------------------------------------

@export
def process_bundle(instructions: list, checkpoint: str, signature: str):
    assert len(instructions) > 0, 'InvalidInstruction: empty bundle'
    assert processed[signature] is None, 'AlreadyProcessed: ' + signature
    issued_at = checkpoints[checkpoint]
    assert issued_at is not None, 'StaleCheckpoint: unknown checkpoint'
    assert height.get() - issued_at <= MAX_CHECKPOINT_AGE, 'StaleCheckpoint: checkpoint expired'

    state = {'accounts': {}, 'mints': {}}
    for index in range(len(instructions)):
        execute(state, instructions, index, ctx.caller)

    for address in state['accounts']:
        accounts[address] = state['accounts'][address]
    for address in state['mints']:
        mints[address] = state['mints'][address]

    new_height = height.get() + 1
    next_checkpoint = sha3("ZKT:checkpoint|" + latest_checkpoint.get() + "|" + signature)
    height.set(new_height)
    latest_checkpoint.set(next_checkpoint)
    checkpoints[next_checkpoint] = new_height
    processed[signature] = {
        'height': new_height,
        'checkpoint': checkpoint,
        'instructions': len(instructions)
    }

    BundleProcessedEvent({
        'signature': signature,
        'height': new_height,
        'instructions': len(instructions)
    })
    return {'signature': signature, 'height': new_height, 'checkpoint': next_checkpoint}
