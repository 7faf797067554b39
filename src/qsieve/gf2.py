"""
Linear algebra over the finite field F_2.

BitMatrix packs eight entries per byte into a contiguous numpy buffer,
in the bit order used by numpy.packbits (most significant bit first).
The padding bits after the last column of every row are always zero.
"""

import numpy as np

from qsieve.errors import InvalidInput

class BitMatrix:
    """
    A rows x cols matrix over GF(2).

    Row and column arguments use wraparound addressing: every index is
    reduced with floor modulo into [0, rows) or [0, cols), so -1 is the
    last row and rows + 1 is row 1. This is deliberate and applies to
    every method taking an index.
    """

    def __init__(self, rows: int, cols: int):
        rows, cols = int(rows), int(cols)
        if rows < 1 or cols < 1:
            raise InvalidInput(f"invalid matrix size {rows} x {cols}")

        self.rows = rows
        self.cols = cols
        self._data = np.zeros((rows, (cols + 7) // 8), dtype=np.uint8)

        # filled in by row_reduction
        self.rank = None
        self.pivots = None

    @classmethod
    def from_array(cls, array) -> "BitMatrix":
        """Build a matrix from a 2D array-like; entries are taken mod 2."""
        array = np.asarray(array, dtype=np.int64)
        if array.ndim != 2:
            raise InvalidInput("expected a 2D array")
        matrix = cls(*array.shape)
        matrix._data = np.packbits((array % 2).astype(np.uint8), axis=1)
        return matrix

    @property
    def size(self) -> tuple[int, int]:
        return self.rows, self.cols

    ############
    # Indexing #
    ############

    def _row(self, i: int) -> int:
        return i % self.rows

    def _col(self, j: int) -> int:
        return j % self.cols

    def _locate(self, j: int) -> tuple[int, int]:
        """Byte index and bit mask of column j."""
        j = self._col(j)
        return j >> 3, 0x80 >> (j & 7)

    def _touch(self):
        # any mutation invalidates the last reduction
        self.rank = None
        self.pivots = None

    def _tail_mask(self) -> int:
        """Mask of the used bits in the last byte of a row."""
        used = self.cols & 7
        return 0xFF if used == 0 else (0xFF << (8 - used)) & 0xFF

    ###############
    # Bit access  #
    ###############

    def get(self, i: int, j: int) -> int:
        byte, mask = self._locate(j)
        return 1 if self._data[self._row(i), byte] & mask else 0

    def set(self, i: int, j: int, bit: int) -> int:
        byte, mask = self._locate(j)
        i = self._row(i)
        if bit & 1:
            self._data[i, byte] |= mask
        else:
            self._data[i, byte] &= ~mask & 0xFF
        self._touch()
        return bit & 1

    def add(self, i: int, j: int, bit: int) -> int:
        """XOR bit into entry (i, j)."""
        return self.set(i, j, self.get(i, j) ^ (bit & 1))

    def flip(self, i: int, j: int) -> int:
        return self.add(i, j, 1)

    def multiply(self, i: int, j: int, bit: int) -> int:
        """AND bit into entry (i, j)."""
        return self.set(i, j, self.get(i, j) & bit)

    def nullify(self, i: int, j: int) -> int:
        return self.set(i, j, 0)

    def get_row(self, i: int) -> np.ndarray:
        return np.unpackbits(self._data[self._row(i)], count=self.cols)

    def get_column(self, j: int) -> np.ndarray:
        byte, mask = self._locate(j)
        return ((self._data[:, byte] & mask) != 0).astype(np.uint8)

    #################
    # Bulk updates  #
    #################

    def fill(self, bit: int) -> "BitMatrix":
        if bit & 1:
            self._data[:] = 0xFF
            self._data[:, -1] &= self._tail_mask()
        else:
            self._data[:] = 0
        self._touch()
        return self

    def clear(self) -> "BitMatrix":
        return self.fill(0)

    def fill_row(self, bit: int, i: int) -> "BitMatrix":
        i = self._row(i)
        if bit & 1:
            self._data[i] = 0xFF
            self._data[i, -1] &= self._tail_mask()
        else:
            self._data[i] = 0
        self._touch()
        return self

    def fill_column(self, bit: int, j: int) -> "BitMatrix":
        byte, mask = self._locate(j)
        if bit & 1:
            self._data[:, byte] |= mask
        else:
            self._data[:, byte] &= ~mask & 0xFF
        self._touch()
        return self

    def swap_rows(self, i1: int, i2: int) -> "BitMatrix":
        i1, i2 = self._row(i1), self._row(i2)
        self._data[[i1, i2]] = self._data[[i2, i1]]
        self._touch()
        return self

    def add_rows(self, to: int, from_: int) -> "BitMatrix":
        """Row to ^= row from_ (elementwise XOR, i.e. addition mod 2)."""
        to, from_ = self._row(to), self._row(from_)
        self._data[to] ^= self._data[from_]
        self._touch()
        return self

    ########################
    # Gaussian elimination #
    ########################

    def row_reduction(self) -> int:
        """
        Gauss-Jordan elimination mod 2, in place.

        Columns are scanned left to right. A column with no 1 at or below the
        current target row contributes no pivot. Otherwise the pivot row is
        swapped into the target row and XORed into every other row (above and
        below) holding a 1 in that column.

        :return int: the rank of the matrix over GF(2)
        """
        data = self._data
        target = 0
        pivots = []

        for j in range(self.cols):
            if target == self.rows:
                break
            byte, mask = j >> 3, 0x80 >> (j & 7)

            hits = np.flatnonzero(data[target:, byte] & mask)
            if len(hits) == 0:
                continue    # free column
            i = target + int(hits[0])
            if i != target:
                data[[target, i]] = data[[i, target]]

            # eliminate column j from all other rows
            others = np.flatnonzero(data[:, byte] & mask)
            others = others[others != target]
            data[others] ^= data[target]

            pivots.append(j)
            target += 1

        self.rank = len(pivots)
        self.pivots = pivots
        return self.rank

    def get_kernel(self) -> list[np.ndarray]:
        """
        Basis of the null space {v : M v = 0 (mod 2)}.

        Reduces the matrix first unless it is already reduced. Each free
        (non-pivot) column f yields one vector: 1 at f, the reduced entry of
        pivot row r at column f at the pivot column of row r, 0 elsewhere.
        Vectors come in increasing order of their free column.

        :return list[np.ndarray]: cols - rank vectors of length cols (uint8)
        """
        if self.pivots is None:
            self.row_reduction()

        reduced = np.unpackbits(self._data[:self.rank], axis=1, count=self.cols)
        pivots = np.array(self.pivots, dtype=np.intp)
        is_pivot = np.zeros(self.cols, dtype=bool)
        is_pivot[pivots] = True

        basis = []
        for free in np.flatnonzero(~is_pivot):
            vec = np.zeros(self.cols, dtype=np.uint8)
            vec[pivots] = reduced[:, free]
            vec[free] = 1
            basis.append(vec)

        return basis

    ########
    # Misc #
    ########

    def dot(self, vector) -> np.ndarray:
        """Matrix-vector product over GF(2)."""
        vector = np.asarray(vector).astype(np.int64) % 2
        if vector.shape != (self.cols,):
            raise InvalidInput(f"vector of length {self.cols} expected, got shape {vector.shape}")
        return ((self.to_array().astype(np.int64) @ vector) % 2).astype(np.uint8)

    def to_array(self) -> np.ndarray:
        """Unpacked copy as a rows x cols uint8 array."""
        return np.unpackbits(self._data, axis=1, count=self.cols)

    def copy(self) -> "BitMatrix":
        other = BitMatrix(self.rows, self.cols)
        other._data = self._data.copy()
        other.rank = self.rank
        other.pivots = None if self.pivots is None else list(self.pivots)
        return other

    def __eq__(self, other):
        if not isinstance(other, BitMatrix):
            return NotImplemented
        return self.size == other.size and np.array_equal(self._data, other._data)

    def __repr__(self):
        return f"BitMatrix({self.rows}, {self.cols})"

    def __str__(self):
        return "\n".join(
            "[" + ",".join(str(b) for b in row) + "]" for row in self.to_array()
        )
