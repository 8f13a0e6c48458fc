import random

from sequences import SequenceSet, encode
from states import gene_states

# Standard genetic code, stop codons excluded from exon interiors
GENETIC_CODE = {
    'ATA':'I', 'ATC':'I', 'ATT':'I', 'ATG':'M',
    'ACA':'T', 'ACC':'T', 'ACG':'T', 'ACT':'T',
    'AAC':'N', 'AAT':'N', 'AAA':'K', 'AAG':'K',
    'AGC':'S', 'AGT':'S', 'AGA':'R', 'AGG':'R',
    'CTA':'L', 'CTC':'L', 'CTG':'L', 'CTT':'L',
    'CCA':'P', 'CCC':'P', 'CCG':'P', 'CCT':'P',
    'CAC':'H', 'CAT':'H', 'CAA':'Q', 'CAG':'Q',
    'CGA':'R', 'CGC':'R', 'CGG':'R', 'CGT':'R',
    'GTA':'V', 'GTC':'V', 'GTG':'V', 'GTT':'V',
    'GCA':'A', 'GCC':'A', 'GCG':'A', 'GCT':'A',
    'GAC':'D', 'GAT':'D', 'GAA':'E', 'GAG':'E',
    'GGA':'G', 'GGC':'G', 'GGG':'G', 'GGT':'G',
    'TCA':'S', 'TCC':'S', 'TCG':'S', 'TCT':'S',
    'TTC':'F', 'TTT':'F', 'TTA':'L', 'TTG':'L',
    'TAC':'Y', 'TAT':'Y', 'TAA':'_', 'TAG':'_',
    'TGC':'C', 'TGT':'C', 'TGA':'_', 'TGG':'W',
}

SENSE_CODONS = sorted(c for c, aa in GENETIC_CODE.items() if aa != '_')
STOP_CODONS = ['TAA', 'TAG', 'TGA']

# Nucleotide composition of intron bodies
INTRON_COMPOSITION = {'A': 0.32, 'C': 0.18, 'G': 0.18, 'T': 0.32}


def _codon_weights(codons, gc_target):
    """Weights favouring codons whose GC content is close to the target."""
    weights = []
    for c in codons:
        gc = (c.count('G') + c.count('C')) / 3.0
        weights.append(1.0 / (abs(gc - gc_target) + 0.1))
    return weights


def generate_exon(n_codons, rng, gc_target=0.55, start=False, stop=False):
    """
    Generates an exon of n_codons codons biased towards a target GC content.

    Args:
        n_codons (int): Number of codons, start/stop codons included.
        rng (random.Random): Source of randomness.
        gc_target (float): Target GC content (0.0 to 1.0).
        start (bool): Begin with ATG.
        stop (bool): End with a stop codon.

    Returns:
        str: DNA sequence, length 3 * n_codons.
    """
    weights = _codon_weights(SENSE_CODONS, gc_target)
    codons = rng.choices(SENSE_CODONS, weights=weights, k=n_codons)
    if start:
        codons[0] = 'ATG'
    if stop:
        codons[-1] = rng.choice(STOP_CODONS)
    return "".join(codons)


def generate_intron(length, rng):
    """GT...AG intron with an AT-rich body; length includes both splice signals."""
    length = max(length, 4)
    bases = list(INTRON_COMPOSITION)
    body = rng.choices(bases, weights=[INTRON_COMPOSITION[b] for b in bases], k=length - 4)
    return 'GT' + "".join(body) + 'AG'


def generate_gene(n_exons, rng=None, exon_codons=(10, 40), intron_length=(30, 90), gc_target=0.55):
    """
    Generates a gene of n_exons exons separated by introns.

    Returns:
        tuple: (DNA sequence, labels) where labels use 'x' for exon and 'i' for intron
        positions. The number of exon positions is a multiple of three.
    """
    rng = rng if rng is not None else random.Random()
    parts = []
    labels = []
    for e in range(n_exons):
        n_codons = rng.randint(*exon_codons)
        exon = generate_exon(n_codons, rng, gc_target, start=(e == 0), stop=(e == n_exons - 1))
        parts.append(exon)
        labels.append('x' * len(exon))
        if e < n_exons - 1:
            intron = generate_intron(rng.randint(*intron_length), rng)
            parts.append(intron)
            labels.append('i' * len(intron))
    return "".join(parts), "".join(labels)


def generate_dataset(n, rng=None, exons=(1, 4), **kwargs):
    """
    Generates n labeled genes over the exon/intron states.

    Returns:
        SequenceSet
    """
    rng = rng if rng is not None else random.Random()
    states = gene_states()
    dataset = SequenceSet(states)
    for i in range(n):
        seq, labels = generate_gene(rng.randint(*exons), rng, **kwargs)
        dataset.add(encode(seq, states.observed), encode(labels, states.hidden), f"gene_{i}")
    return dataset
