"""Merkle tree operations over audit event hashes.

Leaves are the events' canonical hashes, in batch order. Any level with
an odd node count duplicates its last node before pairing, including a
single leaf, so every tree has at least one pairing round:

    1 leaf  -> height 1
    3 leaves -> 4 -> 2 -> 1, height 2

Parents are dual_hash(left + right) over the hex digests.
"""
from ..core.receipt import StopRule, dual_hash


def hash_pair(left: str, right: str) -> str:
    return dual_hash(left + right)


def build_tree(leaf_hashes: list[str]) -> dict:
    """Build a complete Merkle tree from leaf hashes.

    Args:
        leaf_hashes: Leaf digests in batch order

    Returns:
        Dict with root, height (pairing rounds), leaf_count and levels
        (unpadded, leaves first, root last)

    Raises:
        StopRule: If there are no leaves
    """
    if not leaf_hashes:
        raise StopRule("Cannot build a Merkle tree over an empty batch")

    levels = [list(leaf_hashes)]
    current = list(leaf_hashes)
    height = 0

    while True:
        if len(current) % 2:
            current = current + [current[-1]]

        next_level = []
        for i in range(0, len(current), 2):
            next_level.append(hash_pair(current[i], current[i + 1]))

        height += 1
        levels.append(next_level)
        current = next_level
        if len(current) == 1:
            break

    return {
        "root": current[0],
        "height": height,
        "leaf_count": len(leaf_hashes),
        "levels": levels,
    }


def merkle_root(leaf_hashes: list[str]) -> str:
    return build_tree(leaf_hashes)["root"]


def get_proof_path(index: int, tree: dict) -> list[dict]:
    """Sibling path from a leaf up to the root.

    Args:
        index: Leaf position in the batch
        tree: Tree from build_tree

    Returns:
        List of {hash, position} steps; position is the sibling's side
    """
    levels = tree["levels"]
    if index < 0 or index >= len(levels[0]):
        raise IndexError(f"Leaf index {index} outside tree of {len(levels[0])} leaves")

    path = []
    for level in levels[:-1]:
        if index % 2 == 0:
            sibling = index + 1
            position = "right"
            if sibling >= len(level):
                # Padded odd level: the node is paired with itself
                sibling = index
        else:
            sibling = index - 1
            position = "left"

        path.append({"hash": level[sibling], "position": position})
        index //= 2

    return path


def verify_inclusion(leaf_hash: str, proof_path: list[dict], expected_root: str) -> bool:
    """Recompute the root from a leaf and its proof path."""
    current = leaf_hash
    for step in proof_path:
        if step["position"] == "right":
            current = hash_pair(current, step["hash"])
        else:
            current = hash_pair(step["hash"], current)
    return current == expected_root
